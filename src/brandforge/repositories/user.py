"""User repository.

Every balance or flag mutation is a single conditional UPDATE so that two jobs
for the same user can settle concurrently without an in-process lock.
"""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from brandforge.models.user import User


class UserRepository:
    """Repository for User entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get(self, user_id: int) -> User | None:
        """Retrieve user by chat user ID.

        Args:
            user_id: Chat platform user identifier

        Returns:
            User if found, None otherwise
        """
        result = await self.session.execute(select(User).where(User.user_id == user_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_by_referral_code(self, referral_code: str) -> User | None:
        result = await self.session.execute(
            select(User).where(User.referral_code == referral_code)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def add(self, user: User) -> User:
        """Persist new user to database.

        Args:
            user: User entity to persist

        Returns:
            Persisted user with generated ID
        """
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_or_create(self, user_id: int, referred_by: int | None = None) -> User:
        """Return the user row, creating an empty one on first contact.

        Args:
            user_id: Chat platform user identifier
            referred_by: Referrer's user ID, only applied when the row is created

        Returns:
            Existing or newly created user
        """
        user = await self.get(user_id)
        if user is not None:
            return user

        referrer = referred_by if referred_by != user_id else None
        return await self.add(
            User(user_id=user_id, referred_by=referrer, referral_code=f"REF{user_id}")
        )

    async def consume_free_generation(self, user_id: int) -> bool:
        """Flip free_used from false to true.

        Returns:
            True if this call consumed the grant, False if it was already used
        """
        result = await self.session.execute(
            update(User)
            .where(User.user_id == user_id, User.free_used.is_(False))  # type: ignore[arg-type,union-attr]
            .values(free_used=True)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def debit(self, user_id: int, amount: int) -> bool:
        """Decrement the balance by ``amount`` if it would stay non-negative.

        Query:
            UPDATE users SET balance = balance - :amount
            WHERE user_id = :user_id AND balance >= :amount

        Returns:
            True if the balance was decremented, False if funds were insufficient
        """
        if amount <= 0:
            return True
        result = await self.session.execute(
            update(User)
            .where(User.user_id == user_id, User.balance >= amount)  # type: ignore[arg-type]
            .values(balance=User.balance - amount)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def credit(self, user_id: int, amount: int) -> bool:
        """Increment the balance by ``amount``.

        Returns:
            True if the user exists and was credited
        """
        result = await self.session.execute(
            update(User)
            .where(User.user_id == user_id)  # type: ignore[arg-type]
            .values(balance=User.balance + amount)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def mark_converted(self, user_id: int) -> int | None:
        """Mark a referred user as converted, exactly once.

        Guarded by the converted flag itself, so repeated or concurrent calls
        can only succeed once.

        Returns:
            The referrer's user ID if this call performed the conversion, None otherwise
        """
        user = await self.get(user_id)
        if user is None or user.converted or user.referred_by is None:
            return None

        result = await self.session.execute(
            update(User)
            .where(
                User.user_id == user_id,  # type: ignore[arg-type]
                User.converted.is_(False),  # type: ignore[union-attr]
                User.referred_by.is_not(None),  # type: ignore[union-attr]
            )
            .values(converted=True)
        )
        if result.rowcount != 1:  # type: ignore[attr-defined]
            return None
        return user.referred_by

    async def reward_referrer(self, referrer_id: int, reward: int) -> bool:
        """Credit a referral reward and bump the referrer's counters.

        Returns:
            True if the referrer exists and was credited
        """
        result = await self.session.execute(
            update(User)
            .where(User.user_id == referrer_id)  # type: ignore[arg-type]
            .values(
                balance=User.balance + reward,
                referral_count=User.referral_count + 1,
                total_referral_rewards=User.total_referral_rewards + reward,
            )
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def refresh(self, user: User) -> User:
        await self.session.refresh(user)
        return user
