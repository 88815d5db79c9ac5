"""Job admission: the only entry point that creates jobs and debits credits.

Order of checks:
1. Request validation (no side effects)
2. Moderation (ban, cooldown, deletion)
3. Duplicate short-circuit by idempotency key
4. NSFW pre-check on the image payload (records a violation when it trips)
5. One transaction: lock account, re-check key, fold balance, insert job + debit + queue message

The unique constraint on jobs.idempotency_key is the final arbiter between concurrent
duplicates: the loser's transaction rolls back and it returns the winner's job.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import IntegrityError

from vitrine.core.config import Settings
from vitrine.core.timezone import utcnow
from vitrine.models.asset import Asset, AssetType
from vitrine.models.job import (
    BackgroundStyle,
    Job,
    MannequinMode,
    ProductCategory,
    SourceChannel,
    TemplateLayout,
)
from vitrine.models.ledger import CreditLedgerEntry, LedgerEntryType, debit_key
from vitrine.services.exceptions import (
    ForbiddenError,
    InsufficientCreditsError,
    RejectedContentError,
    RequestValidationError,
    ServiceError,
)
from vitrine.services.idempotency import build_idempotency_key
from vitrine.services.image_generation.prompts import validate_prompt
from vitrine.services.messages import get_message
from vitrine.services.moderation import ModerationPolicy, ModerationStatus
from vitrine.services.nsfw import NsfwChecker
from vitrine.services.pricing import credits_for, priority_for
from vitrine.services.storage import BlobStore, upload_key
from vitrine.services.work_queue import WorkQueue

logger = structlog.get_logger(__name__)

MAX_HANDLE_LENGTH = 64
MAX_BADGE_LENGTH = 32


@dataclass
class AdmissionRequest:
    """Fields of a generation request, already parsed from the transport."""

    source_channel: SourceChannel
    category: ProductCategory
    background_style: BackgroundStyle
    template_layout: TemplateLayout
    mannequin_mode: MannequinMode = MannequinMode.NONE
    source_message_id: Optional[str] = None
    client_request_id: Optional[str] = None
    nonce: Optional[str] = None
    image: Optional[bytes] = None
    input_image_key: Optional[str] = None
    custom_prompt: Optional[str] = None
    overlays: Optional[dict[str, Any]] = None
    correlation_id: Optional[str] = None


@dataclass
class AdmissionResult:
    job: Job
    was_created: bool
    balance_after: int


def _validate_overlays(overlays: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if not overlays:
        return None
    price = overlays.get("price")
    if price is not None and (not isinstance(price, int) or isinstance(price, bool) or price < 0):
        raise RequestValidationError("Overlay price must be a non-negative integer")
    handle = overlays.get("handle")
    if handle is not None and len(str(handle)) > MAX_HANDLE_LENGTH:
        raise RequestValidationError(f"Overlay handle exceeds {MAX_HANDLE_LENGTH} characters")
    badge = overlays.get("badge")
    if badge is not None and len(str(badge)) > MAX_BADGE_LENGTH:
        raise RequestValidationError(f"Overlay badge exceeds {MAX_BADGE_LENGTH} characters")
    cleaned = {k: overlays.get(k) for k in ("price", "currency", "handle", "badge")}
    return {k: v for k, v in cleaned.items() if v is not None} or None


def _forbidden(status: ModerationStatus) -> ForbiddenError:
    return ForbiddenError(
        status.reason or "Account cannot create jobs",
        details={
            "violation_count": status.violation_count,
            "status": status.status.value,
            "cooldown_until": status.cooldown_until.isoformat() if status.cooldown_until else None,
            "remaining_hours": status.remaining_hours,
        },
    )


class AdmissionService:
    """Validates, de-duplicates and atomically admits generation requests."""

    def __init__(
        self,
        uow_factory: Callable,
        moderation: ModerationPolicy,
        storage: BlobStore,
        work_queue: WorkQueue,
        settings: Settings,
        nsfw_checker: Optional[NsfwChecker] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.uow_factory = uow_factory
        self.moderation = moderation
        self.storage = storage
        self.work_queue = work_queue
        self.settings = settings
        self.nsfw_checker = nsfw_checker
        self.clock = clock

    async def admit(self, account_id: UUID, request: AdmissionRequest) -> AdmissionResult:
        """Admit a request.

        Returns:
            The job (new or pre-existing for the same idempotency key), whether this call
            created it, and the account balance afterwards

        Raises:
            RequestValidationError: Malformed request
            ForbiddenError: Moderation block or unknown account
            RejectedContentError: NSFW pre-check tripped (violation recorded)
            InsufficientCreditsError: Balance would go negative
            StorageError: Input image could not be stored
        """
        correlation_id = request.correlation_id or uuid4().hex
        log = logger.bind(account_id=str(account_id), correlation_id=correlation_id)

        custom_prompt = self._validate(request)
        overlays = _validate_overlays(request.overlays)

        try:
            idempotency_key = build_idempotency_key(
                request.source_channel,
                account_id,
                source_message_id=request.source_message_id,
                client_request_id=request.client_request_id,
                nonce=request.nonce,
            )
        except ValueError as e:
            raise RequestValidationError(str(e)) from e

        try:
            status = await self.moderation.can_admit(account_id)
        except LookupError as e:
            raise ForbiddenError("Account not found") from e
        if not status.allowed:
            log.info("admission.blocked", reason="moderation", status=status.status.value)
            raise _forbidden(status)

        existing = await self._find_existing(idempotency_key)
        if existing is not None:
            log.info("admission.duplicate", job_id=str(existing.job.id))
            return existing

        if request.image is not None:
            await self._check_content(account_id, request.image, correlation_id)

        job_id = uuid4()
        input_key = request.input_image_key
        if request.image is not None:
            input_key = upload_key(account_id, job_id, self.clock())
            await self.storage.put(self.storage.raw_bucket, input_key, request.image, "image/jpeg")

        try:
            async with await self.uow_factory() as uow:
                account = await uow.accounts.get_for_update(account_id)
                if account is None:
                    raise ForbiddenError("Account not found")

                # Only after the row lock: a concurrent duplicate that held the lock has
                # committed by now, and its debit must not be read as a missing balance
                duplicate = await uow.jobs.get_by_idempotency_key(idempotency_key)
                if duplicate is not None:
                    balance = await uow.ledger.get_balance(account_id)
                    log.info("admission.duplicate", job_id=str(duplicate.id), reason="concurrent_insert")
                    return AdmissionResult(duplicate, False, balance)

                locked_status = self.moderation.evaluate(account)
                if not locked_status.allowed:
                    raise _forbidden(locked_status)

                cost = credits_for(request.mannequin_mode, self.settings)
                balance = await uow.ledger.get_balance(account_id)
                if balance - cost < 0:
                    log.info("admission.blocked", reason="insufficient_credits", balance=balance, cost=cost)
                    raise InsufficientCreditsError(
                        get_message(
                            "credits.insufficient", account.language, required=cost, available=balance
                        ),
                        details={"required": cost, "available": balance},
                    )

                job = Job(
                    id=job_id,
                    account_id=account_id,
                    idempotency_key=idempotency_key,
                    correlation_id=correlation_id,
                    source_channel=request.source_channel,
                    source_message_id=request.source_message_id,
                    client_request_id=request.client_request_id,
                    category=request.category,
                    background_style=request.background_style,
                    template_layout=request.template_layout,
                    mannequin_mode=request.mannequin_mode,
                    custom_prompt=custom_prompt,
                    overlays=overlays,
                    input_image_key=input_key,
                    priority=priority_for(account),
                    credits_debited=cost,
                )
                await uow.jobs.add(job)
                await uow.ledger.add(
                    CreditLedgerEntry(
                        account_id=account_id,
                        entry_type=LedgerEntryType.DEBIT,
                        amount=-cost,
                        job_id=job.id,
                        idempotency_key=debit_key(job.id),
                        description="Generation job",
                    )
                )
                if request.image is not None:
                    await uow.assets.add(
                        Asset(
                            account_id=account_id,
                            job_id=job.id,
                            asset_type=AssetType.INPUT_IMAGE,
                            format_tag="input",
                            bucket=self.storage.raw_bucket,
                            key=input_key,  # type: ignore[arg-type]
                            content_type="image/jpeg",
                            size_bytes=len(request.image),
                        )
                    )
                await self.work_queue.publish(uow, job)
                balance_after = balance - cost

        except IntegrityError:
            # Lost the race against a concurrent duplicate: return the winner's job
            existing = await self._find_existing(idempotency_key)
            if existing is None:
                raise
            log.info("admission.duplicate", job_id=str(existing.job.id), reason="concurrent_insert")
            return existing

        log.info(
            "job.admitted",
            job_id=str(job.id),
            credits_debited=cost,
            balance_after=balance_after,
            priority=job.priority.value,
        )
        return AdmissionResult(job, True, balance_after)

    def _validate(self, request: AdmissionRequest) -> Optional[str]:
        if request.image is None and not request.input_image_key:
            raise RequestValidationError("An image payload or an input_image_key is required")
        if request.image is not None and len(request.image) == 0:
            raise RequestValidationError("Image payload is empty")
        if request.custom_prompt is None:
            return None
        try:
            return validate_prompt(request.custom_prompt)
        except ValueError as e:
            raise RequestValidationError(str(e)) from e

    async def _find_existing(self, idempotency_key: str) -> Optional[AdmissionResult]:
        async with await self.uow_factory() as uow:
            job = await uow.jobs.get_by_idempotency_key(idempotency_key)
            if job is None:
                return None
            balance = await uow.ledger.get_balance(job.account_id)
        return AdmissionResult(job, False, balance)

    async def _check_content(self, account_id: UUID, image: bytes, correlation_id: str) -> None:
        """Run the NSFW pre-check. Checker outages fail open."""
        if self.nsfw_checker is None:
            return

        try:
            verdict = await self.nsfw_checker.check(image)
        except ServiceError as e:
            logger.warning(
                "admission.nsfw_check_failed",
                account_id=str(account_id),
                correlation_id=correlation_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return

        if not verdict.flagged:
            return

        violation = await self.moderation.record_violation(
            account_id,
            "nsfw_content",
            {"category": verdict.category, "score": verdict.score},
            correlation_id=correlation_id,
        )
        async with await self.uow_factory() as uow:
            account = await uow.accounts.get_by_id(account_id)
        language = account.language if account else self.settings.default_language

        raise RejectedContentError(
            get_message("nsfw.rejected", language, category=verdict.category or "nsfw"),
            details={
                "violation_count": violation.violation_count,
                "action": violation.action.value,
                "sanction_message": violation.message,
                "category": verdict.category,
            },
        )
