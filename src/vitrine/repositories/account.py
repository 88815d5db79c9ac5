"""Account repository for the moderation and admission paths."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vitrine.models.account import Account


class AccountRepository:
    """Repository for Account entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, account_id: UUID) -> Account | None:
        result = await self.session.execute(select(Account).where(Account.id == account_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_for_update(self, account_id: UUID) -> Account | None:
        """Retrieve account with a row lock held until the transaction ends.

        Serializes concurrent debits for the same account. Ignored by SQLite, which
        serializes whole transactions instead.
        """
        result = await self.session.execute(
            select(Account).where(Account.id == account_id).with_for_update()  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def add(self, account: Account) -> Account:
        """Persist new account to database.

        Args:
            account: Account entity to persist

        Returns:
            Persisted account with generated ID
        """
        self.session.add(account)
        await self.session.flush()
        return account
