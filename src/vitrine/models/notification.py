"""In-app notification entity, polled by the app front-ends."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from vitrine.core.timezone import utcnow


class NotificationKind(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    account_id: UUID = Field(foreign_key="accounts.id", index=True)
    job_id: UUID = Field(foreign_key="jobs.id", index=True)
    kind: NotificationKind
    channel: str = Field(max_length=32)
    message: str = Field(max_length=1000)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())
    read_at: Optional[datetime] = Field(default=None, sa_type=DateTime())
