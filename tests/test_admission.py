"""Job admission tests.

Tests focus on the guarantees of the admission transaction:
- Debit, job and queue message are created together, never one without the others
- Balance never goes negative
- Duplicates (sequential or concurrent) resolve to one job and one debit
- Moderation and the NSFW pre-check reject before anything is charged
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from conftest import make_jpeg
from vitrine.models.account import AccountStatus, AccountTier
from vitrine.models.asset import AssetType
from vitrine.models.job import (
    BackgroundStyle,
    Job,
    JobPriority,
    JobStatus,
    MannequinMode,
    ProductCategory,
    SourceChannel,
    TemplateLayout,
)
from vitrine.models.ledger import LedgerEntryType
from vitrine.models.queue_message import PRIORITY_HIGH, PRIORITY_LOW, QueueMessageStatus
from vitrine.repositories.account import AccountRepository
from vitrine.services.admission import AdmissionRequest, AdmissionService
from vitrine.services.exceptions import (
    ForbiddenError,
    InsufficientCreditsError,
    RejectedContentError,
    RequestValidationError,
    TransientError,
)
from vitrine.services.moderation import ModerationPolicy
from vitrine.services.nsfw import NsfwVerdict
from vitrine.services.work_queue import WorkQueue

FLAGGED = NsfwVerdict(flagged=True, category="porn", score=0.97)


@pytest.fixture
def admission(uow_factory, storage, settings, clock, nsfw_checker) -> AdmissionService:
    moderation = ModerationPolicy(uow_factory, cooldown_hours=24, clock=clock)
    work_queue = WorkQueue(clock=clock, rng=lambda: 0.0)
    return AdmissionService(
        uow_factory,
        moderation,
        storage,
        work_queue,
        settings,
        nsfw_checker=nsfw_checker,
        clock=clock,
    )


def make_request(**overrides) -> AdmissionRequest:
    fields = dict(
        source_channel=SourceChannel.TELEGRAM_BOT,
        category=ProductCategory.CLOTHING,
        background_style=BackgroundStyle.STUDIO_WHITE,
        template_layout=TemplateLayout.A,
        source_message_id=f"msg-{uuid4().hex[:8]}",
        image=make_jpeg(),
    )
    fields.update(overrides)
    return AdmissionRequest(**fields)


async def count_jobs(uow_factory, *criteria) -> int:
    async with await uow_factory() as uow:
        result = await uow.session.execute(select(func.count()).select_from(Job).where(*criteria))
        return result.scalar_one()


@pytest.mark.asyncio
async def test_admission_debits_and_enqueues(admission, create_account, uow_factory, storage):
    account = await create_account(balance=1)

    result = await admission.admit(
        account.id,
        make_request(correlation_id="corr-123", overlays={"price": 12000, "handle": "shop"}),
    )

    assert result.was_created is True
    assert result.balance_after == 0
    job = result.job
    assert job.status == JobStatus.QUEUED
    assert job.credits_debited == 1
    assert job.priority == JobPriority.LOW
    assert job.correlation_id == "corr-123"
    assert job.input_image_key == f"uploads/2025/03/{account.id}/{job.id}.jpg"
    assert storage.keys(storage.raw_bucket) == [job.input_image_key]

    async with await uow_factory() as uow:
        assert await uow.ledger.get_balance(account.id) == 0
        debits = await uow.ledger.list_for_job(job.id, LedgerEntryType.DEBIT)
        message = await uow.queue.get_by_job_id(job.id)
        inputs = await uow.assets.list_by_job(job.id, AssetType.INPUT_IMAGE)

    assert [d.amount for d in debits] == [-1]
    assert message is not None
    assert message.status == QueueMessageStatus.PENDING
    assert message.priority == PRIORITY_LOW
    assert message.payload["correlation_id"] == "corr-123"
    assert message.payload["overlays"] == {"price": 12000, "handle": "shop"}
    assert [a.key for a in inputs] == [job.input_image_key]


@pytest.mark.asyncio
async def test_balance_never_goes_negative(admission, create_account, get_balance, uow_factory):
    """Scenario: balance 1 → first job admitted (0) → second rejected, nothing written."""
    account = await create_account(balance=1)
    await admission.admit(account.id, make_request())

    with pytest.raises(InsufficientCreditsError) as exc_info:
        await admission.admit(account.id, make_request(source_message_id="second"))

    assert exc_info.value.code == "INSUFFICIENT_CREDITS"
    assert exc_info.value.details == {"required": 1, "available": 0}
    assert await get_balance(account.id) == 0
    assert await count_jobs(uow_factory, Job.account_id == account.id) == 1


@pytest.mark.asyncio
async def test_duplicate_request_returns_existing_job(admission, create_account, get_balance):
    account = await create_account(balance=5)
    request = make_request(source_message_id="tg-991")

    first = await admission.admit(account.id, request)
    second = await admission.admit(account.id, make_request(source_message_id="tg-991"))

    assert first.was_created is True
    assert second.was_created is False
    assert second.job.id == first.job.id
    assert second.balance_after == 4
    assert await get_balance(account.id) == 4


@pytest.mark.asyncio
async def test_concurrent_duplicates_create_one_job(admission, create_account, get_balance, uow_factory):
    account = await create_account(balance=5)

    results = await asyncio.gather(
        admission.admit(account.id, make_request(client_request_id="req-7", source_message_id=None)),
        admission.admit(account.id, make_request(client_request_id="req-7", source_message_id=None)),
    )

    assert sorted(r.was_created for r in results) == [False, True]
    assert results[0].job.id == results[1].job.id
    assert await get_balance(account.id) == 4
    assert await count_jobs(uow_factory, Job.idempotency_key == results[0].job.idempotency_key) == 1
    async with await uow_factory() as uow:
        assert len(await uow.ledger.list_for_job(results[0].job.id, LedgerEntryType.DEBIT)) == 1


@pytest.mark.asyncio
async def test_concurrent_duplicates_with_exact_balance(admission, create_account, get_balance, uow_factory):
    """Scenario: balance covers one job; the duplicate must not read as insufficient credits."""
    account = await create_account(balance=1)

    results = await asyncio.gather(
        admission.admit(account.id, make_request(source_message_id="tg-500")),
        admission.admit(account.id, make_request(source_message_id="tg-500")),
    )

    assert sorted(r.was_created for r in results) == [False, True]
    assert results[0].job.id == results[1].job.id
    assert [r.balance_after for r in results] == [0, 0]
    assert await get_balance(account.id) == 0
    assert await count_jobs(uow_factory, Job.account_id == account.id) == 1


@pytest.mark.asyncio
async def test_duplicate_committed_while_waiting_for_account_lock(
    admission, create_account, get_balance, uow_factory, monkeypatch
):
    """Scenario:
    1. balance 1, two requests for the same message
    2. the second passes the duplicate pre-check, then waits on the account lock
    3. the first commits its job and debit meanwhile
    4. the second returns the first job instead of INSUFFICIENT_CREDITS
    """
    account = await create_account(balance=1)
    get_for_update = AccountRepository.get_for_update
    first = []

    async def lock_after_first_commits(self, account_id):
        if not first:
            first.append(None)
            first[0] = await admission.admit(account_id, make_request(source_message_id="tg-777"))
        return await get_for_update(self, account_id)

    monkeypatch.setattr(AccountRepository, "get_for_update", lock_after_first_commits)

    second = await admission.admit(account.id, make_request(source_message_id="tg-777"))

    assert first[0].was_created is True
    assert second.was_created is False
    assert second.job.id == first[0].job.id
    assert second.balance_after == 0
    assert await get_balance(account.id) == 0
    assert await count_jobs(uow_factory, Job.account_id == account.id) == 1


@pytest.mark.asyncio
async def test_custom_mannequin_costs_more_and_paid_tier_is_high_priority(
    admission, create_account, uow_factory
):
    account = await create_account(balance=3, tier=AccountTier.USER_PRO)

    result = await admission.admit(account.id, make_request(mannequin_mode=MannequinMode.CUSTOM))

    assert result.job.credits_debited == 2
    assert result.balance_after == 1
    assert result.job.priority == JobPriority.HIGH
    async with await uow_factory() as uow:
        message = await uow.queue.get_by_job_id(result.job.id)
    assert message.priority == PRIORITY_HIGH


@pytest.mark.asyncio
async def test_existing_upload_key_skips_storage(admission, create_account, storage, uow_factory):
    account = await create_account(balance=1)

    result = await admission.admit(
        account.id, make_request(image=None, input_image_key="uploads/2025/02/pre/uploaded.jpg")
    )

    assert result.job.input_image_key == "uploads/2025/02/pre/uploaded.jpg"
    assert storage.objects == {}
    async with await uow_factory() as uow:
        assert await uow.assets.list_by_job(result.job.id) == []


@pytest.mark.asyncio
async def test_nsfw_escalation_then_cooldown_lifts(
    admission, create_account, nsfw_checker, clock, get_balance, storage
):
    """Scenario:
    1. flagged upload → rejected with a warning, nothing charged or stored
    2. flagged again → rejected with a cooldown
    3. clean upload during cooldown → forbidden with remaining hours
    4. after the window → admitted
    """
    account = await create_account(balance=3)
    nsfw_checker.verdict = FLAGGED

    with pytest.raises(RejectedContentError) as first:
        await admission.admit(account.id, make_request())
    assert first.value.details["violation_count"] == 1
    assert first.value.details["action"] == "warning"
    assert first.value.details["category"] == "porn"
    assert "porn" in first.value.message
    assert storage.objects == {}
    assert await get_balance(account.id) == 3

    with pytest.raises(RejectedContentError) as second:
        await admission.admit(account.id, make_request())
    assert second.value.details["action"] == "cooldown"

    nsfw_checker.verdict = NsfwVerdict(flagged=False)
    with pytest.raises(ForbiddenError) as blocked:
        await admission.admit(account.id, make_request())
    assert blocked.value.details["remaining_hours"] == 24
    assert blocked.value.details["violation_count"] == 2

    clock.advance(hours=24, seconds=1)
    result = await admission.admit(account.id, make_request())
    assert result.was_created is True
    assert await get_balance(account.id) == 2


@pytest.mark.asyncio
async def test_third_violation_bans(admission, create_account, nsfw_checker, clock):
    account = await create_account(
        balance=3, violation_count=2, updated_at=clock.now - timedelta(days=2)
    )
    nsfw_checker.verdict = FLAGGED

    with pytest.raises(RejectedContentError) as rejected:
        await admission.admit(account.id, make_request())
    assert rejected.value.details["action"] == "ban"
    assert rejected.value.details["violation_count"] == 3

    nsfw_checker.verdict = NsfwVerdict(flagged=False)
    clock.advance(days=30)
    with pytest.raises(ForbiddenError) as forbidden:
        await admission.admit(account.id, make_request())
    assert forbidden.value.details["status"] == "banned"


@pytest.mark.asyncio
async def test_nsfw_checker_outage_fails_open(admission, create_account, nsfw_checker):
    account = await create_account(balance=1)
    nsfw_checker.error = TransientError("classifier timeout", "PROVIDER_TIMEOUT")

    result = await admission.admit(account.id, make_request())

    assert result.was_created is True
    assert nsfw_checker.calls == 1


@pytest.mark.asyncio
async def test_banned_and_unknown_accounts_are_forbidden(admission, create_account, get_balance):
    banned = await create_account(balance=5, status=AccountStatus.BANNED, violation_count=3)

    with pytest.raises(ForbiddenError) as exc_info:
        await admission.admit(banned.id, make_request())
    assert exc_info.value.details["status"] == "banned"
    assert await get_balance(banned.id) == 5

    with pytest.raises(ForbiddenError, match="Account not found"):
        await admission.admit(uuid4(), make_request())


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"image": None},
        {"image": b""},
        {"custom_prompt": "   "},
        {"custom_prompt": "x" * 1001},
        {"overlays": {"price": -5}},
        {"overlays": {"handle": "h" * 65}},
        {"source_message_id": "bad id with spaces"},
    ],
)
async def test_invalid_requests_rejected_without_side_effects(
    admission, create_account, get_balance, storage, overrides
):
    account = await create_account(balance=2)

    with pytest.raises(RequestValidationError):
        await admission.admit(account.id, make_request(**overrides))

    assert await get_balance(account.id) == 2
    assert storage.objects == {}
