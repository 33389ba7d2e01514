"""User entity - spendable balance, free-generation grant and referral tracking."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger
from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    """Ledger row for one chat user.

    The balance is only ever changed through single-statement conditional updates
    issued by UserRepository, never by mutating a loaded instance.
    """

    __tablename__ = "users"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: int = Field(sa_type=BigInteger, unique=True, index=True)
    balance: int = Field(default=0, ge=0)
    free_used: bool = Field(default=False)
    converted: bool = Field(default=False)
    referred_by: Optional[int] = Field(default=None, sa_type=BigInteger, index=True)
    referral_code: Optional[str] = Field(default=None, max_length=64, unique=True)
    referral_count: int = Field(default=0, ge=0)
    total_referral_rewards: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
