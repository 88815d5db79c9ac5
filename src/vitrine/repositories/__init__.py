"""Repository layer.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from vitrine.repositories.account import AccountRepository
from vitrine.repositories.asset import AssetRepository
from vitrine.repositories.failed_job import FailedJobRepository
from vitrine.repositories.job import JobRepository
from vitrine.repositories.ledger import CreditLedgerRepository
from vitrine.repositories.notification import AuditLogRepository, NotificationRepository
from vitrine.repositories.queue_message import QueueMessageRepository
from vitrine.repositories.routing import RoutingRepository

__all__ = [
    "AccountRepository",
    "AssetRepository",
    "AuditLogRepository",
    "CreditLedgerRepository",
    "FailedJobRepository",
    "JobRepository",
    "NotificationRepository",
    "QueueMessageRepository",
    "RoutingRepository",
]
