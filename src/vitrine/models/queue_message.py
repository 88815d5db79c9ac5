"""Work queue message - one durable delivery unit per job."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from vitrine.core.timezone import utcnow


class QueueMessageStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    DEAD = "dead"


# Lower value is picked up first
PRIORITY_HIGH = 1
PRIORITY_NORMAL = 5
PRIORITY_LOW = 10


class QueueMessage(SQLModel, table=True):
    """Pending work for the pipeline worker. attempts counts deliveries, not failures."""

    __tablename__ = "queue_messages"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    job_id: UUID = Field(foreign_key="jobs.id", unique=True, index=True)
    priority: int = Field(default=PRIORITY_LOW, index=True)
    status: QueueMessageStatus = Field(default=QueueMessageStatus.PENDING, index=True)
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    run_after: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime())
    locked_by: Optional[str] = Field(default=None, max_length=64)
    locked_at: Optional[datetime] = Field(default=None, sa_type=DateTime())
    last_error: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())
