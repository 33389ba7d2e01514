"""QueuedJob repository.

Provides the durable queue operations with worker coordination via FOR UPDATE SKIP LOCKED.
"""

from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from brandforge.models.job import JobStatus, QueuedJob


class JobRepository:
    """Repository for QueuedJob entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: QueuedJob) -> QueuedJob:
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> QueuedJob | None:
        result = await self.session.execute(select(QueuedJob).where(QueuedJob.id == job_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def claim_pending(self, limit: int) -> list[QueuedJob]:
        """Lock the oldest pending jobs and mark them running.

        Query explanation:
        - WHERE status = 'pending': Only unclaimed jobs
        - ORDER BY enqueued_at ASC: FIFO
        - LIMIT: Free worker slots
        - FOR UPDATE SKIP LOCKED: Lock rows, skip already locked ones

        Args:
            limit: Maximum number of jobs to claim

        Returns:
            Jobs now in running state (caller commits)
        """
        if limit <= 0:
            return []

        result = await self.session.execute(
            select(QueuedJob)
            .where(QueuedJob.status == JobStatus.PENDING)  # type: ignore[arg-type]
            .order_by(QueuedJob.enqueued_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        jobs = list(result.scalars().all())
        for job in jobs:
            job.mark_running()
            self.session.add(job)
        await self.session.flush()
        return jobs

    async def delete(self, job_id: UUID) -> bool:
        """Remove a job after terminal execution.

        Returns:
            True if a row was deleted
        """
        result = await self.session.execute(delete(QueuedJob).where(QueuedJob.id == job_id))  # type: ignore[arg-type]
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def reset_orphaned(self) -> int:
        """Return jobs stuck in running state to pending.

        Query:
            UPDATE jobs SET status = 'pending', claimed_at = NULL
            WHERE status = 'running'

        Returns:
            Number of jobs reset
        """
        result = await self.session.execute(
            update(QueuedJob)
            .where(QueuedJob.status == JobStatus.RUNNING)  # type: ignore[arg-type]
            .values(status=JobStatus.PENDING, claimed_at=None)
        )
        return result.rowcount  # type: ignore[attr-defined]

    async def count_by_status(self, status: JobStatus) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(QueuedJob).where(QueuedJob.status == status)  # type: ignore[arg-type]
        )
        return result.scalar_one()
