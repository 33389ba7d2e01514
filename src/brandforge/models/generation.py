"""GenerationRecord entity - history of delivered generations."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, BigInteger, Column
from sqlmodel import Field, SQLModel


class GenerationRecord(SQLModel, table=True):
    """One delivered generation (a logo concept, a meme, a sticker, an edit or a package)."""

    __tablename__ = "generations"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: int = Field(sa_type=BigInteger, index=True)
    job_id: Optional[UUID] = Field(default=None, index=True)
    type: str = Field(max_length=20)
    cost: int = Field(default=0, ge=0)
    quality: Optional[str] = Field(default=None, max_length=20)
    urls: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    generation_metadata: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)
