"""Credit ledger entity - immutable signed credit movements."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from vitrine.core.timezone import utcnow


class LedgerEntryType(str, Enum):
    DEBIT = "debit"
    REFUND = "refund"
    PURCHASE = "purchase"
    ADJUSTMENT = "adjustment"


class CreditLedgerEntry(SQLModel, table=True):
    """One signed credit movement. Entries are never updated or deleted.

    The account balance is the sum of all its entries. idempotency_key makes
    per-job debits and refunds unique at the database level.
    """

    __tablename__ = "credit_ledger"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    account_id: UUID = Field(foreign_key="accounts.id", index=True)
    entry_type: LedgerEntryType
    amount: int
    job_id: Optional[UUID] = Field(default=None, foreign_key="jobs.id", index=True)
    payment_reference: Optional[str] = Field(default=None, max_length=128)
    idempotency_key: Optional[str] = Field(default=None, unique=True, max_length=255)
    description: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())


def debit_key(job_id: UUID) -> str:
    return f"debit:{job_id}"


def refund_key(job_id: UUID) -> str:
    return f"refund:{job_id}"
