"""Dead-letter repository.

Provides lookup by job id (one record per job) and the operator review queries.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vitrine.models.failed_job import FailedJobRecord


class FailedJobRepository:
    """Repository for FailedJobRecord entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_job_id(self, job_id: UUID) -> FailedJobRecord | None:
        result = await self.session.execute(
            select(FailedJobRecord).where(FailedJobRecord.job_id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def add(self, record: FailedJobRecord) -> FailedJobRecord:
        """Persist new dead-letter record.

        Raises:
            IntegrityError: If a record already exists for the same job
        """
        self.session.add(record)
        await self.session.flush()
        return record

    async def list_unreviewed(self, limit: int = 50, offset: int = 0) -> list[FailedJobRecord]:
        """List records awaiting operator review, newest first."""
        result = await self.session.execute(
            select(FailedJobRecord)
            .where(FailedJobRecord.reviewed == False)  # noqa: E712
            .order_by(FailedJobRecord.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def mark_reviewed(
        self, record_id: UUID, reviewer_id: UUID, notes: Optional[str] = None
    ) -> FailedJobRecord:
        """Mark a record reviewed.

        Raises:
            ValueError: If the record does not exist or is already reviewed
        """
        result = await self.session.execute(
            select(FailedJobRecord).where(FailedJobRecord.id == record_id)  # type: ignore[arg-type]
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise ValueError(f"Failed job record {record_id} not found")
        record.mark_reviewed(reviewer_id, notes)
        self.session.add(record)
        await self.session.flush()
        return record
