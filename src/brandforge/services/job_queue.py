"""Durable at-least-once job queue backed by the jobs table.

Rows are claimed with FOR UPDATE SKIP LOCKED, executed by the handler
registered for their type, and deleted once execution ends, whatever the
outcome. The queue never re-delivers a job whose handler raised; retries
belong inside the pipelines, around individual provider calls.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable
from uuid import UUID

import structlog
from pydantic import ValidationError

from brandforge.jobs.payloads import GenerationJob, JobType, job_to_payload, parse_job
from brandforge.models.job import QueuedJob
from brandforge.services.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

JobHandler = Callable[[GenerationJob], Awaitable[Any]]


class JobQueue:
    """Queue facade used by the intake API (enqueue) and the worker (claim/execute)."""

    def __init__(self, uow_factory):
        """Initialize queue.

        Args:
            uow_factory: Factory returned by create_uow_factory
        """
        self.uow_factory = uow_factory
        self._handlers: dict[JobType, JobHandler] = {}

    def register_handler(self, job_type: JobType | str, handler: JobHandler) -> None:
        """Bind the coroutine that executes jobs of ``job_type``.

        Raises:
            ValueError: If job_type is not a known JobType
        """
        self._handlers[JobType(job_type)] = handler

    def ensure_handlers(self) -> None:
        """Verify every job type has a handler. Call once at startup.

        Raises:
            ConfigurationError: Listing the job types without a handler
        """
        missing = [job_type.value for job_type in JobType if job_type not in self._handlers]
        if missing:
            raise ConfigurationError(f"No handler registered for job types: {', '.join(missing)}")

    @property
    def registered_types(self) -> list[JobType]:
        return list(self._handlers)

    async def enqueue(
        self,
        job_type: JobType | str,
        payload: GenerationJob | dict[str, Any],
        timeout_seconds: int | None = None,
    ) -> QueuedJob:
        """Persist a job and return immediately.

        Args:
            job_type: Kind of job; must match the payload's own type
            payload: Job model or raw dict validated against the job schema
            timeout_seconds: Advisory timeout, stored with the job but not enforced

        Returns:
            The persisted queue row

        Raises:
            ValueError: Unknown job type or payload/type mismatch
            pydantic.ValidationError: Payload does not match the job schema
        """
        job_type = JobType(job_type)
        if isinstance(payload, dict):
            payload = parse_job({**payload, "type": job_type.value})
        if payload.job_type is not job_type:
            raise ValueError(
                f"Payload type {payload.job_type.value} does not match {job_type.value}"
            )

        timeout = timeout_seconds or payload.timeout_seconds
        record = QueuedJob(
            id=payload.id,
            job_type=job_type.value,
            payload=job_to_payload(payload),
            timeout_seconds=timeout,
            enqueued_at=payload.enqueued_at,
        )

        async with await self.uow_factory() as uow:
            await uow.jobs.add(record)

        logger.info(
            "job.enqueued",
            job_id=str(record.id),
            job_type=job_type.value,
            user_id=payload.user_id,
            cost=payload.cost,
            timeout_seconds=timeout,
        )
        return record

    async def claim(self, limit: int) -> list[QueuedJob]:
        """Claim up to ``limit`` pending jobs (oldest first)."""
        if limit <= 0:
            return []
        async with await self.uow_factory() as uow:
            return await uow.jobs.claim_pending(limit)

    async def complete(self, job_id: UUID) -> None:
        """Remove a job after terminal execution."""
        async with await self.uow_factory() as uow:
            await uow.jobs.delete(job_id)

    async def recover_orphaned(self) -> int:
        """Return jobs left running by a crashed worker to pending.

        Returns:
            Number of jobs reset
        """
        async with await self.uow_factory() as uow:
            recovered = await uow.jobs.reset_orphaned()
        if recovered > 0:
            logger.info("worker.recovery", orphaned_jobs_reset=recovered)
        return recovered

    async def execute(self, record: QueuedJob) -> bool:
        """Run the handler for a claimed job, then delete the job.

        A handler exception is logged and the job is dropped. Cancellation
        leaves the row running so the next startup recovers it.

        Returns:
            True if the handler returned normally
        """
        start_time = time.monotonic()
        log = logger.bind(job_id=str(record.id), job_type=record.job_type)

        try:
            job = parse_job(record.payload)
        except ValidationError as e:
            log.error("queue.job.invalid_payload", error_message=str(e))
            await self.complete(record.id)
            return False

        handler = self._handlers.get(job.job_type)
        if handler is None:
            log.error("queue.job.no_handler")
            await self.complete(record.id)
            return False

        log.info("queue.job.started", user_id=job.user_id)
        succeeded = False
        try:
            await handler(job)
            succeeded = True
        except asyncio.CancelledError:
            log.warning("queue.job.cancelled")
            raise
        except Exception as e:
            log.error(
                "queue.job.failed",
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=True,
            )

        duration = time.monotonic() - start_time
        if record.timeout_seconds and duration > record.timeout_seconds:
            log.warning(
                "queue.job.overran",
                timeout_seconds=record.timeout_seconds,
                duration_seconds=duration,
            )

        await self.complete(record.id)
        log.info("queue.job.finished", succeeded=succeeded, duration_seconds=duration)
        return succeeded
