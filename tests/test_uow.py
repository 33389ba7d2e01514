"""Unit of Work pattern tests.

Tests focus on transaction management:
- Successful commits persist changes
- Exceptions trigger rollback
- Multiple repository operations are atomic
"""

import pytest

from brandforge.models.settlement import Settlement


@pytest.mark.asyncio
async def test_uow_commits_on_successful_exit(uow_factory):
    """Test that UoW commits changes when exiting successfully.

    Changes made within the context should persist after the context exits.
    """
    async with await uow_factory() as uow:
        await uow.users.get_or_create(100)
        await uow.users.credit(100, 75)

    async with await uow_factory() as uow:
        user = await uow.users.get(100)
        assert user is not None
        assert user.balance == 75


@pytest.mark.asyncio
async def test_uow_rollback_on_exception(uow_factory):
    """Test that UoW rolls back changes when an exception occurs.

    If an exception is raised within the context:
    1. Changes should be rolled back
    2. Exception should propagate (not be swallowed)
    """
    with pytest.raises(ValueError, match="Intentional error"):
        async with await uow_factory() as uow:
            await uow.users.get_or_create(101)
            raise ValueError("Intentional error")

    async with await uow_factory() as uow:
        assert await uow.users.get(101) is None


@pytest.mark.asyncio
async def test_uow_balance_and_marker_are_atomic(uow_factory):
    """A debit and its settlement marker commit or roll back together."""
    async with await uow_factory() as uow:
        await uow.users.get_or_create(102)
        await uow.users.credit(102, 100)

    with pytest.raises(RuntimeError):
        async with await uow_factory() as uow:
            assert await uow.users.debit(102, 40) is True
            await uow.settlements.add(Settlement(key="job:atomic", user_id=102, cost=40))
            raise RuntimeError("crash before commit")

    async with await uow_factory() as uow:
        assert (await uow.users.get(102)).balance == 100
        assert await uow.settlements.exists("job:atomic") is False


@pytest.mark.asyncio
async def test_debit_is_conditional(uow_factory):
    """debit refuses to take the balance below zero."""
    async with await uow_factory() as uow:
        await uow.users.get_or_create(103)
        await uow.users.credit(103, 30)

    async with await uow_factory() as uow:
        assert await uow.users.debit(103, 50) is False
        assert await uow.users.debit(103, 30) is True
        assert await uow.users.debit(103, 1) is False

    async with await uow_factory() as uow:
        assert (await uow.users.get(103)).balance == 0
