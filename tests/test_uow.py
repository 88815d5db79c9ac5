"""Unit of Work pattern tests.

Tests focus on transaction management:
- Successful commits persist changes
- Exceptions trigger rollback
- Job, debit and queue message are written atomically
"""

from uuid import uuid4

import pytest

from vitrine.models.account import Account
from vitrine.models.job import (
    BackgroundStyle,
    Job,
    ProductCategory,
    SourceChannel,
    TemplateLayout,
)
from vitrine.models.ledger import CreditLedgerEntry, LedgerEntryType, debit_key
from vitrine.models.queue_message import QueueMessage


def new_job(account_id, key: str = "api:test:req:1") -> Job:
    return Job(
        account_id=account_id,
        idempotency_key=key,
        correlation_id="corr",
        source_channel=SourceChannel.API,
        category=ProductCategory.SHOES,
        background_style=BackgroundStyle.STUDIO_GRAY,
        template_layout=TemplateLayout.B,
        input_image_key="uploads/x.jpg",
    )


@pytest.mark.asyncio
async def test_uow_commits_on_successful_exit(uow_factory):
    """Changes made within the context persist after the context exits."""
    async with await uow_factory() as uow:
        account = await uow.accounts.add(Account(language="en"))
        account_id = account.id

    async with await uow_factory() as uow:
        found = await uow.accounts.get_by_id(account_id)
        assert found is not None
        assert found.language == "en"


@pytest.mark.asyncio
async def test_uow_rollback_on_exception(uow_factory):
    """An exception inside the context rolls back and propagates."""
    account_id = uuid4()

    with pytest.raises(ValueError, match="Simulated error"):
        async with await uow_factory() as uow:
            await uow.accounts.add(Account(id=account_id))
            raise ValueError("Simulated error")

    async with await uow_factory() as uow:
        assert await uow.accounts.get_by_id(account_id) is None, "Account should not exist after rollback"


@pytest.mark.asyncio
async def test_uow_provides_all_repositories(uow_factory):
    async with await uow_factory() as uow:
        for name in (
            "accounts",
            "jobs",
            "ledger",
            "assets",
            "failed_jobs",
            "routing",
            "queue",
            "notifications",
            "audit_logs",
        ):
            assert getattr(uow, name) is not None, name


@pytest.mark.asyncio
async def test_uow_atomic_multi_repository_operation(uow_factory):
    """Job, debit and queue message commit together or not at all."""
    async with await uow_factory() as uow:
        account = await uow.accounts.add(Account())
        account_id = account.id

    with pytest.raises(RuntimeError):
        async with await uow_factory() as uow:
            job = await uow.jobs.add(new_job(account_id))
            job_id = job.id
            await uow.ledger.add(
                CreditLedgerEntry(
                    account_id=account_id,
                    entry_type=LedgerEntryType.DEBIT,
                    amount=-1,
                    job_id=job.id,
                    idempotency_key=debit_key(job.id),
                )
            )
            await uow.queue.add(QueueMessage(job_id=job.id))
            raise RuntimeError("crash before commit")

    async with await uow_factory() as uow:
        assert await uow.jobs.get_by_idempotency_key("api:test:req:1") is None
        assert await uow.ledger.get_balance(account_id) == 0
        assert await uow.ledger.list_for_job(job_id) == []
