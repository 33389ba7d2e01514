"""GenerationRecord repository."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brandforge.models.generation import GenerationRecord


class GenerationRepository:
    """Repository for GenerationRecord entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, record: GenerationRecord) -> GenerationRecord:
        """Persist a generation record.

        Args:
            record: Record to persist

        Returns:
            Persisted record with generated ID
        """
        self.session.add(record)
        await self.session.flush()
        return record

    async def list_by_job(self, job_id: UUID) -> list[GenerationRecord]:
        result = await self.session.execute(
            select(GenerationRecord)
            .where(GenerationRecord.job_id == job_id)  # type: ignore[arg-type]
            .order_by(GenerationRecord.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def list_by_user(self, user_id: int, limit: int = 50) -> list[GenerationRecord]:
        """Retrieve a user's most recent generations.

        Args:
            user_id: Chat platform user identifier
            limit: Maximum number of records to return

        Returns:
            Records ordered newest first
        """
        result = await self.session.execute(
            select(GenerationRecord)
            .where(GenerationRecord.user_id == user_id)  # type: ignore[arg-type]
            .order_by(GenerationRecord.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
