"""Notification and audit log repositories (append-mostly records)."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vitrine.models.audit_log import AuditLog
from vitrine.models.notification import Notification


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, notification: Notification) -> Notification:
        self.session.add(notification)
        await self.session.flush()
        return notification

    async def list_for_job(self, job_id: UUID) -> list[Notification]:
        result = await self.session.execute(
            select(Notification)
            .where(Notification.job_id == job_id)  # type: ignore[arg-type]
            .order_by(Notification.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())


class AuditLogRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, entry: AuditLog) -> AuditLog:
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_for_entity(self, entity_id: UUID) -> list[AuditLog]:
        result = await self.session.execute(
            select(AuditLog)
            .where(AuditLog.entity_id == entity_id)  # type: ignore[arg-type]
            .order_by(AuditLog.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())
