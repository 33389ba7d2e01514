"""Settlement marker repository."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brandforge.models.settlement import Settlement


class SettlementRepository:
    """Repository for processed-job markers."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def exists(self, key: str) -> bool:
        """Check whether a settlement key has already been processed.

        Args:
            key: Settlement key (``job:<id>`` or ``package:<digest>``)

        Returns:
            True if a marker exists
        """
        result = await self.session.execute(
            select(Settlement.key).where(Settlement.key == key)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none() is not None

    async def add(self, settlement: Settlement) -> Settlement:
        """Insert the marker.

        Raises:
            IntegrityError: If the key was settled concurrently (on flush)
        """
        self.session.add(settlement)
        await self.session.flush()
        return settlement
