"""Dead-letter entity - terminal record of a job that could not be processed."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from vitrine.core.timezone import utcnow


class FailedJobRecord(SQLModel, table=True):
    """Created once per job by the dead-letter handler, never auto-deleted."""

    __tablename__ = "failed_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    job_id: UUID = Field(foreign_key="jobs.id", unique=True, index=True)
    account_id: UUID = Field(foreign_key="accounts.id", index=True)
    correlation_id: str = Field(max_length=64)
    error_code: str = Field(max_length=64)
    error_message: str = Field(max_length=1000)
    attempt_count: int = Field(ge=0)
    last_attempt_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())
    job_snapshot: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    stack_trace: Optional[str] = Field(default=None)
    refunded_credits: int = Field(default=0, ge=0)

    reviewed: bool = Field(default=False, index=True)
    reviewed_by: Optional[UUID] = Field(default=None)
    reviewed_at: Optional[datetime] = Field(default=None, sa_type=DateTime())
    review_notes: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())

    def mark_reviewed(self, reviewer_id: UUID, notes: Optional[str] = None) -> None:
        if self.reviewed:
            raise ValueError(f"Failed job record {self.id} is already reviewed")
        self.reviewed = True
        self.reviewed_by = reviewer_id
        self.reviewed_at = utcnow()
        self.review_notes = notes
