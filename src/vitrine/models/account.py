"""Account entity - moderation view of a credit-owning user."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from vitrine.core.timezone import utcnow


class AccountTier(str, Enum):
    """Commercial tier, drives queue priority."""

    USER_FREE = "user_free"
    USER_PRO = "user_pro"
    RESELLER = "reseller"


class AccountStatus(str, Enum):
    """Stored account status. Cooldown is derived from updated_at, never stored."""

    ACTIVE = "active"
    BANNED = "banned"
    DELETING = "deleting"
    DELETED = "deleted"


class Account(SQLModel, table=True):
    """Account owning credits, jobs and a moderation status."""

    __tablename__ = "accounts"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    tier: AccountTier = Field(default=AccountTier.USER_FREE)
    status: AccountStatus = Field(default=AccountStatus.ACTIVE, index=True)
    language: str = Field(default="fr", max_length=8)
    violation_count: int = Field(default=0, ge=0)
    telegram_chat_id: Optional[str] = Field(default=None, max_length=64)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())

    @property
    def is_paid(self) -> bool:
        return self.tier in (AccountTier.USER_PRO, AccountTier.RESELLER)
