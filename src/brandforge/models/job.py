"""QueuedJob entity - durable queue row with claim status tracking."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class JobStatus(str, Enum):
    """Queue row status.

    Terminal jobs are deleted rather than marked, so there is no done/failed status.
    """

    PENDING = "pending"
    RUNNING = "running"


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job or pipeline state transition."""

    pass


class QueuedJob(SQLModel, table=True):
    """A generation job waiting for, or held by, the worker."""

    __tablename__ = "jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    job_type: str = Field(max_length=20, index=True)
    payload: dict = Field(sa_column=Column(JSON, nullable=False))
    status: JobStatus = Field(default=JobStatus.PENDING, index=True)
    timeout_seconds: Optional[int] = Field(default=None, ge=1)
    enqueued_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    claimed_at: Optional[datetime] = Field(default=None)

    def mark_running(self) -> None:
        """Transition from pending to running.

        Raises:
            InvalidStateTransition: If current status is not pending
        """
        if self.status != JobStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot claim job from {self.status.value}. Job must be in pending state."
            )
        self.status = JobStatus.RUNNING
        self.claimed_at = datetime.utcnow()

    def release(self) -> None:
        """Transition from running back to pending (orphan recovery).

        Raises:
            InvalidStateTransition: If current status is not running
        """
        if self.status != JobStatus.RUNNING:
            raise InvalidStateTransition(
                f"Cannot release job from {self.status.value}. Job must be in running state."
            )
        self.status = JobStatus.PENDING
        self.claimed_at = None
