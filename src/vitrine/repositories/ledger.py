"""Credit ledger repository.

Append-only: there is no update or delete method. Balance is always a fold over entries.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from vitrine.models.ledger import CreditLedgerEntry, LedgerEntryType


class CreditLedgerRepository:
    """Repository for CreditLedgerEntry entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, entry: CreditLedgerEntry) -> CreditLedgerEntry:
        """Append a ledger entry.

        Raises:
            IntegrityError: If an entry with the same idempotency key already exists
        """
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def get_balance(self, account_id: UUID) -> int:
        """Sum of all signed amounts for the account (0 when there are none)."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(CreditLedgerEntry.amount), 0)).where(
                CreditLedgerEntry.account_id == account_id  # type: ignore[arg-type]
            )
        )
        return int(result.scalar_one())

    async def get_by_idempotency_key(self, idempotency_key: str) -> CreditLedgerEntry | None:
        result = await self.session.execute(
            select(CreditLedgerEntry).where(
                CreditLedgerEntry.idempotency_key == idempotency_key  # type: ignore[arg-type]
            )
        )
        return result.scalar_one_or_none()

    async def list_for_job(
        self, job_id: UUID, entry_type: LedgerEntryType | None = None
    ) -> list[CreditLedgerEntry]:
        """List entries linked to a job, oldest first, optionally filtered by type."""
        stmt = select(CreditLedgerEntry).where(CreditLedgerEntry.job_id == job_id)  # type: ignore[arg-type]
        if entry_type is not None:
            stmt = stmt.where(CreditLedgerEntry.entry_type == entry_type)  # type: ignore[arg-type]
        result = await self.session.execute(
            stmt.order_by(CreditLedgerEntry.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())
