"""Queue message repository.

Provides worker coordination via FOR UPDATE SKIP LOCKED so concurrent workers
claim non-overlapping messages.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vitrine.models.queue_message import QueueMessage, QueueMessageStatus


class QueueMessageRepository:
    """Repository for QueueMessage entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, message: QueueMessage) -> QueueMessage:
        self.session.add(message)
        await self.session.flush()
        return message

    async def get_by_id(self, message_id: UUID) -> QueueMessage | None:
        result = await self.session.execute(
            select(QueueMessage).where(QueueMessage.id == message_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_job_id(self, job_id: UUID) -> QueueMessage | None:
        result = await self.session.execute(
            select(QueueMessage).where(QueueMessage.job_id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_runnable(
        self, now: datetime, stale_cutoff: datetime, limit: int = 10
    ) -> list[QueueMessage]:
        """Retrieve messages ready for delivery with row-level locking.

        Query explanation:
        - pending messages whose backoff window (run_after) has passed
        - processing messages whose lock is older than stale_cutoff (worker crashed)
        - ORDER BY priority ASC, created_at ASC: high lane first, then oldest
        - FOR UPDATE SKIP LOCKED: Lock rows, skip already locked ones

        Args:
            now: Current time
            stale_cutoff: Locks taken before this time are considered abandoned
            limit: Maximum number of messages to retrieve

        Returns:
            List of messages locked for this worker
        """
        result = await self.session.execute(
            select(QueueMessage)
            .where(
                or_(
                    and_(
                        QueueMessage.status == QueueMessageStatus.PENDING,  # type: ignore[arg-type]
                        QueueMessage.run_after <= now,  # type: ignore[arg-type]
                    ),
                    and_(
                        QueueMessage.status == QueueMessageStatus.PROCESSING,  # type: ignore[arg-type]
                        QueueMessage.locked_at <= stale_cutoff,  # type: ignore[arg-type, operator]
                    ),
                )
            )
            .order_by(QueueMessage.priority.asc(), QueueMessage.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def release_stale(self, stale_cutoff: datetime) -> int:
        """Return abandoned processing messages to pending. Returns the number released."""
        result = await self.session.execute(
            update(QueueMessage)
            .where(
                QueueMessage.status == QueueMessageStatus.PROCESSING,  # type: ignore[arg-type]
                QueueMessage.locked_at <= stale_cutoff,  # type: ignore[arg-type, operator]
            )
            .values(status=QueueMessageStatus.PENDING, locked_by=None, locked_at=None)
        )
        return result.rowcount  # type: ignore[attr-defined]

    async def count_by_status(self, status: QueueMessageStatus) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(QueueMessage).where(QueueMessage.status == status)  # type: ignore[arg-type]
        )
        return result.scalar_one()
