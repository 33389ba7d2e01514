"""Settlement entity - processed-job marker that makes ledger settlement idempotent."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import BigInteger
from sqlmodel import Field, SQLModel


class Settlement(SQLModel, table=True):
    """Marker row written in the same transaction as the balance mutation.

    The primary key is the settlement key (``job:<id>`` or ``package:<digest>``),
    so a second settlement attempt for the same outcome fails on insert.
    """

    __tablename__ = "settlements"  # type: ignore[assignment]

    key: str = Field(primary_key=True, max_length=100)
    user_id: int = Field(sa_type=BigInteger, index=True)
    job_id: Optional[UUID] = Field(default=None)
    cost: int = Field(default=0, ge=0)
    used_free_generation: bool = Field(default=False)
    referrer_id: Optional[int] = Field(default=None, sa_type=BigInteger)
    created_at: datetime = Field(default_factory=datetime.utcnow)
