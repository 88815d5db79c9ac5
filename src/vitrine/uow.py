"""Unit of Work: one database transaction with every repository bound to it.

Admission, the queue and the dead-letter path rely on this boundary: whatever they
write inside one `async with` block lands together or not at all.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vitrine.repositories.account import AccountRepository
from vitrine.repositories.asset import AssetRepository
from vitrine.repositories.failed_job import FailedJobRepository
from vitrine.repositories.job import JobRepository
from vitrine.repositories.ledger import CreditLedgerRepository
from vitrine.repositories.notification import AuditLogRepository, NotificationRepository
from vitrine.repositories.queue_message import QueueMessageRepository
from vitrine.repositories.routing import RoutingRepository

logger = structlog.get_logger(__name__)


class UnitOfWork:
    """Transaction scope over a single session.

    Example:
        async with await uow_factory() as uow:
            balance = await uow.ledger.get_balance(account_id)
            await uow.jobs.add(job)
            await uow.ledger.add(debit)
        # committed here, or rolled back if the block raised
    """

    def __init__(self, session: AsyncSession):
        self.session = session

        self.accounts = AccountRepository(session)
        self.jobs = JobRepository(session)
        self.ledger = CreditLedgerRepository(session)
        self.assets = AssetRepository(session)
        self.failed_jobs = FailedJobRepository(session)
        self.routing = RoutingRepository(session)
        self.queue = QueueMessageRepository(session)
        self.notifications = NotificationRepository(session)
        self.audit_logs = AuditLogRepository(session)

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Commit on a clean exit, roll back otherwise, then close the session.

        Closing releases the connection, and with it any row or SQLite write lock,
        before the caller moves on. Exceptions always propagate.
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.debug("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()
        return False


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Wrap a session factory into an async UnitOfWork factory.

    Every call opens a fresh session, so units of work never share state.
    """

    async def _create_uow() -> UnitOfWork:
        return UnitOfWork(session_factory())

    return _create_uow
