"""Job repository.

Jobs are looked up by id for the pipeline and by idempotency key for admission.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vitrine.models.job import Job, JobStatus


class JobRepository:
    """Repository for Job entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, job_id: UUID) -> Job | None:
        """Retrieve job by its unique identifier.

        Args:
            job_id: Job's unique identifier

        Returns:
            Job if found, None otherwise
        """
        result = await self.session.execute(select(Job).where(Job.id == job_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_for_account(self, job_id: UUID, account_id: UUID) -> Job | None:
        """Retrieve job only if it belongs to the given account."""
        result = await self.session.execute(
            select(Job).where(Job.id == job_id, Job.account_id == account_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_idempotency_key(self, idempotency_key: str) -> Job | None:
        """Retrieve job by idempotency key (unique).

        Args:
            idempotency_key: Key computed at admission time

        Returns:
            Job if found, None otherwise
        """
        result = await self.session.execute(
            select(Job).where(Job.idempotency_key == idempotency_key)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_status(self, job_id: UUID) -> JobStatus | None:
        """Read only the current status, without loading the row into the session."""
        result = await self.session.execute(select(Job.status).where(Job.id == job_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def add(self, job: Job) -> Job:
        """Persist new job to database.

        Raises:
            IntegrityError: If a job with the same idempotency key already exists
        """
        self.session.add(job)
        await self.session.flush()
        return job
