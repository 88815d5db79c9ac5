"""Credit cost and queue priority of a job."""

from vitrine.core.config import Settings
from vitrine.models.account import Account
from vitrine.models.job import JobPriority, MannequinMode
from vitrine.models.queue_message import PRIORITY_HIGH, PRIORITY_LOW


def credits_for(mannequin_mode: MannequinMode, settings: Settings) -> int:
    """Credits debited at admission. Custom mannequin jobs cost more."""
    if mannequin_mode == MannequinMode.CUSTOM:
        return settings.credits_per_custom_mannequin_job
    return settings.credits_per_job


def priority_for(account: Account) -> JobPriority:
    """Paid and reseller tiers get the high lane."""
    return JobPriority.HIGH if account.is_paid else JobPriority.LOW


def queue_priority(priority: JobPriority) -> int:
    return PRIORITY_HIGH if priority == JobPriority.HIGH else PRIORITY_LOW
