"""pytest fixtures for Vitrine tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped SQLite database (fresh file per test) with schema created
- uow_factory: Function-scoped UnitOfWork factory
- settings: Test settings pointing at the per-test database
- Fakes for object storage, image providers, the NSFW checker and the notifier

SQLite transactions take the write lock at BEGIN, so a test must never keep one
UnitOfWork open while opening another.
"""

import io
import os

# Settings are read at import time by vitrine.app
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./vitrine-test.db")
os.environ["RUN_WORKER_IN_API"] = "false"

from datetime import datetime, timedelta  # noqa: E402
from typing import Any, Optional  # noqa: E402
from uuid import UUID  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from PIL import Image  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import vitrine.models  # noqa: E402,F401
from vitrine.core.config import Settings  # noqa: E402
from vitrine.core.database import create_engine  # noqa: E402
from vitrine.models.account import Account, AccountTier  # noqa: E402
from vitrine.models.job import (  # noqa: E402
    BackgroundStyle,
    ProductCategory,
    SourceChannel,
    TemplateLayout,
)
from vitrine.models.ledger import CreditLedgerEntry, LedgerEntryType  # noqa: E402
from vitrine.models.notification import NotificationKind  # noqa: E402
from vitrine.services.admission import AdmissionRequest, AdmissionService  # noqa: E402
from vitrine.services.exceptions import StorageError  # noqa: E402
from vitrine.services.image_generation.base import GenerationRequest  # noqa: E402
from vitrine.services.moderation import ModerationPolicy  # noqa: E402
from vitrine.services.nsfw import NsfwVerdict  # noqa: E402
from vitrine.services.work_queue import WorkQueue  # noqa: E402
from vitrine.uow import create_uow_factory  # noqa: E402


def make_png(width: int = 64, height: int = 64, color: str = "#3366cc") -> bytes:
    """Small valid PNG for image-handling code paths."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_jpeg(width: int = 96, height: int = 128, color: str = "#cc6633") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="JPEG")
    return buffer.getvalue()


class FakeClock:
    """Settable clock returning naive UTC datetimes."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2025, 3, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeStorage:
    """In-memory BlobStore. Keys listed in fail_put_keys raise StorageError on put."""

    raw_bucket = "test-raw"
    gallery_bucket = "test-gallery"

    def __init__(self):
        self.objects: dict[tuple[str, str], bytes] = {}
        self.content_types: dict[tuple[str, str], str] = {}
        self.fail_put_keys: set[str] = set()
        self.fail_all_puts = False
        self.fail_gets = False

    async def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        if self.fail_all_puts or key in self.fail_put_keys:
            raise StorageError(f"Upload of {bucket}/{key} failed: simulated outage")
        self.objects[(bucket, key)] = data
        self.content_types[(bucket, key)] = content_type

    async def get(self, bucket: str, key: str) -> bytes:
        if self.fail_gets:
            raise StorageError(f"Download of {bucket}/{key} failed: simulated outage")
        try:
            return self.objects[(bucket, key)]
        except KeyError:
            raise StorageError(f"Download of {bucket}/{key} failed: NoSuchKey")

    def public_url(self, bucket: str, key: str) -> str:
        return f"https://cdn.test/{bucket}/{key}"

    def keys(self, bucket: str) -> list[str]:
        return sorted(key for (b, key) in self.objects if b == bucket)


class FakeImageProvider:
    """Image provider returning fixed bytes, or raising the configured error."""

    def __init__(self, name: str, result: Optional[bytes] = None, error: Optional[Exception] = None):
        self.name = name
        self.result = result if result is not None else make_png(512, 512, "#aa3355")
        self.error = error
        self.calls: list[tuple[GenerationRequest, str]] = []

    async def generate(self, request: GenerationRequest, model: str) -> bytes:
        self.calls.append((request, model))
        if self.error is not None:
            raise self.error
        return self.result


class FakeNsfwChecker:
    def __init__(self, verdict: Optional[NsfwVerdict] = None, error: Optional[Exception] = None):
        self.verdict = verdict or NsfwVerdict(flagged=False, category=None, score=0.01)
        self.error = error
        self.calls = 0

    async def check(self, image: bytes) -> NsfwVerdict:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.verdict


class RecordingNotifier:
    def __init__(self):
        self.sent: list[dict[str, Any]] = []

    async def notify(self, account_id, job_id, kind: NotificationKind, message: str, channel) -> None:
        self.sent.append(
            {
                "account_id": account_id,
                "job_id": job_id,
                "kind": kind,
                "message": message,
                "channel": channel,
            }
        )


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'vitrine.db'}"


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_url):
    """Fresh database with every table created, disposed after the test."""
    engine = create_engine(db_url)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    return create_uow_factory(session_factory)


@pytest.fixture
def settings(db_url) -> Settings:
    return Settings(DATABASE_URL=db_url, APP_ENV="test")  # type: ignore[call-arg]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def nsfw_checker() -> FakeNsfwChecker:
    return FakeNsfwChecker()


@pytest.fixture
def create_account(uow_factory):
    """Factory fixture: persist an account with an optional starting balance."""

    async def _create(
        balance: int = 0,
        tier: AccountTier = AccountTier.USER_FREE,
        language: str = "fr",
        **fields: Any,
    ) -> Account:
        async with await uow_factory() as uow:
            account = await uow.accounts.add(Account(tier=tier, language=language, **fields))
            if balance:
                await uow.ledger.add(
                    CreditLedgerEntry(
                        account_id=account.id,
                        entry_type=LedgerEntryType.PURCHASE,
                        amount=balance,
                        payment_reference="test-topup",
                    )
                )
        return account

    return _create


@pytest.fixture
def get_balance(uow_factory):
    async def _balance(account_id: UUID) -> int:
        async with await uow_factory() as uow:
            return await uow.ledger.get_balance(account_id)

    return _balance


@pytest_asyncio.fixture(scope="function")
async def session(session_factory):
    """Single session for repository-level tests. Do not mix with uow_factory in one test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def admit_job(uow_factory, storage, settings, clock, create_account):
    """Factory fixture: admit a job through the real admission path (no NSFW check)."""
    service = AdmissionService(
        uow_factory,
        ModerationPolicy(uow_factory, clock=clock),
        storage,
        WorkQueue(clock=clock, rng=lambda: 0.0),
        settings,
        clock=clock,
    )

    async def _admit(account: Optional[Account] = None, balance: int = 1, **request_fields: Any):
        if account is None:
            account = await create_account(balance=balance)
        fields: dict[str, Any] = dict(
            source_channel=SourceChannel.MOBILE_APP,
            category=ProductCategory.CLOTHING,
            background_style=BackgroundStyle.STUDIO_WHITE,
            template_layout=TemplateLayout.A,
            image=make_jpeg(),
        )
        fields.update(request_fields)
        result = await service.admit(account.id, AdmissionRequest(**fields))
        return result.job

    return _admit
