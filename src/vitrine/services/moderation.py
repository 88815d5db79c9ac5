"""Moderation policy: three-strike escalation per account.

violation_count 1 -> warning, 2 -> cooldown (derived from updated_at), 3+ -> ban.
Cooldown expiry is recomputed from the stored timestamp on every check, so nothing
but violation_count, status and updated_at is ever persisted.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional
from uuid import UUID

import structlog

from vitrine.core.timezone import utcnow
from vitrine.models.account import Account, AccountStatus
from vitrine.models.audit_log import AuditLog
from vitrine.services.messages import get_message

logger = structlog.get_logger(__name__)

WARNING_THRESHOLD = 1
COOLDOWN_THRESHOLD = 2
BAN_THRESHOLD = 3


class SanctionAction(str, Enum):
    WARNING = "warning"
    COOLDOWN = "cooldown"
    BAN = "ban"


@dataclass
class ViolationResult:
    """Outcome of one recorded violation."""

    action: SanctionAction
    violation_count: int
    message: str
    cooldown_until: Optional[datetime] = None


@dataclass
class ModerationStatus:
    """Whether an account may create jobs right now."""

    allowed: bool
    violation_count: int
    status: AccountStatus
    reason: Optional[str] = None
    cooldown_until: Optional[datetime] = None
    remaining_hours: Optional[int] = None
    details: dict[str, Any] = field(default_factory=dict)


def sanction_for(violation_count: int) -> SanctionAction:
    """Map a violation count (>= 1) to the sanction it triggers."""
    if violation_count >= BAN_THRESHOLD:
        return SanctionAction.BAN
    if violation_count >= COOLDOWN_THRESHOLD:
        return SanctionAction.COOLDOWN
    return SanctionAction.WARNING


class ModerationPolicy:
    """Escalating sanction state machine backed by the accounts table."""

    def __init__(
        self,
        uow_factory: Callable,
        cooldown_hours: int = 24,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize policy.

        Args:
            uow_factory: Factory producing UnitOfWork instances
            cooldown_hours: Length of the cooldown window after the second violation
            clock: Source of the current (naive UTC) time, injectable for tests
        """
        self.uow_factory = uow_factory
        self.cooldown_window = timedelta(hours=cooldown_hours)
        self.clock = clock

    def evaluate(self, account: Account) -> ModerationStatus:
        """Derive the admission decision from a loaded account. Read-only."""
        count = account.violation_count
        language = account.language

        if account.status == AccountStatus.BANNED:
            return ModerationStatus(
                allowed=False,
                violation_count=count,
                status=account.status,
                reason=get_message("moderation.ban", language),
            )

        if COOLDOWN_THRESHOLD <= count < BAN_THRESHOLD:
            cooldown_until = account.updated_at + self.cooldown_window
            now = self.clock()
            if now < cooldown_until:
                remaining_hours = math.ceil((cooldown_until - now).total_seconds() / 3600)
                return ModerationStatus(
                    allowed=False,
                    violation_count=count,
                    status=account.status,
                    reason=get_message("moderation.cooldown", language, hours=remaining_hours),
                    cooldown_until=cooldown_until,
                    remaining_hours=remaining_hours,
                )

        if account.status in (AccountStatus.DELETING, AccountStatus.DELETED):
            return ModerationStatus(
                allowed=False,
                violation_count=count,
                status=account.status,
                reason=get_message("moderation.deleting", language),
            )

        return ModerationStatus(allowed=True, violation_count=count, status=account.status)

    async def can_admit(self, account_id: UUID) -> ModerationStatus:
        """Check whether the account may create a job now.

        Raises:
            LookupError: If the account does not exist
        """
        async with await self.uow_factory() as uow:
            account = await uow.accounts.get_by_id(account_id)
        if account is None:
            raise LookupError(f"Account {account_id} not found")
        return self.evaluate(account)

    async def record_violation(
        self,
        account_id: UUID,
        violation_type: str,
        details: Optional[dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ) -> ViolationResult:
        """Increment the violation counter and apply the resulting sanction.

        The only writer of violation_count. Status is persisted only when it changes.
        updated_at is refreshed on every violation: it anchors the cooldown window.

        Raises:
            LookupError: If the account does not exist
        """
        details = details or {}

        async with await self.uow_factory() as uow:
            account = await uow.accounts.get_for_update(account_id)
            if account is None:
                raise LookupError(f"Account {account_id} not found")

            now = self.clock()
            new_count = account.violation_count + 1
            action = sanction_for(new_count)
            cooldown_until = None

            if action == SanctionAction.BAN:
                message = get_message("moderation.ban", account.language)
            elif action == SanctionAction.COOLDOWN:
                cooldown_until = now + self.cooldown_window
                hours = int(self.cooldown_window.total_seconds() // 3600)
                message = get_message("moderation.cooldown", account.language, hours=hours)
            else:
                message = get_message(
                    "moderation.warning", account.language, remaining=BAN_THRESHOLD - new_count
                )

            account.violation_count = new_count
            account.updated_at = now
            if action == SanctionAction.BAN and account.status != AccountStatus.BANNED:
                account.status = AccountStatus.BANNED
                await uow.audit_logs.add(
                    AuditLog(
                        actor_id=None,
                        action="user_banned_auto",
                        entity_type="account",
                        entity_id=account.id,
                        details={
                            "reason": f"Automatic ban: {new_count} content violations",
                            "violation_type": violation_type,
                            "violation_count": new_count,
                            **details,
                        },
                    )
                )
            uow.session.add(account)

        logger.warning(
            "moderation.violation_recorded",
            account_id=str(account_id),
            correlation_id=correlation_id,
            violation_type=violation_type,
            violation_count=new_count,
            sanction=action.value,
        )

        return ViolationResult(
            action=action,
            violation_count=new_count,
            message=message,
            cooldown_until=cooldown_until,
        )
