"""FastAPI dependency injection functions."""

from typing import AsyncGenerator

from fastapi import Request

from brandforge.core.config import Settings
from brandforge.services.job_queue import JobQueue
from brandforge.services.ledger import BalanceLedger
from brandforge.uow import UnitOfWork


async def get_uow(request: Request) -> AsyncGenerator[UnitOfWork, None]:
    """FastAPI dependency for Unit of Work injection.

    Retrieves the UoW factory from app.state and yields a UoW instance.
    The UoW is committed on successful request completion or rolled back
    if an exception occurs.
    """
    uow_factory = request.app.state.uow_factory
    async with await uow_factory() as uow:
        yield uow


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue


def get_ledger(request: Request) -> BalanceLedger:
    return request.app.state.ledger
