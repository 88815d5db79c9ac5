"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from vitrine.models.account import Account, AccountStatus, AccountTier
from vitrine.models.asset import Asset, AssetType
from vitrine.models.audit_log import AuditLog
from vitrine.models.failed_job import FailedJobRecord
from vitrine.models.job import (
    BackgroundStyle,
    InvalidStateTransition,
    Job,
    JobPriority,
    JobStatus,
    MannequinMode,
    ProductCategory,
    SourceChannel,
    TemplateLayout,
)
from vitrine.models.ledger import CreditLedgerEntry, LedgerEntryType
from vitrine.models.notification import Notification, NotificationKind
from vitrine.models.queue_message import QueueMessage, QueueMessageStatus
from vitrine.models.routing import ModelRouting, PromptProfile

__all__ = [
    "Account",
    "AccountStatus",
    "AccountTier",
    "Asset",
    "AssetType",
    "AuditLog",
    "BackgroundStyle",
    "CreditLedgerEntry",
    "FailedJobRecord",
    "InvalidStateTransition",
    "Job",
    "JobPriority",
    "JobStatus",
    "LedgerEntryType",
    "MannequinMode",
    "ModelRouting",
    "Notification",
    "NotificationKind",
    "ProductCategory",
    "PromptProfile",
    "QueueMessage",
    "QueueMessageStatus",
    "SourceChannel",
    "TemplateLayout",
]
