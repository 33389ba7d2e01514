"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from brandforge.models.generation import GenerationRecord
from brandforge.models.job import InvalidStateTransition, JobStatus, QueuedJob
from brandforge.models.settlement import Settlement
from brandforge.models.user import User

__all__ = [
    "User",
    "GenerationRecord",
    "QueuedJob",
    "JobStatus",
    "InvalidStateTransition",
    "Settlement",
]
