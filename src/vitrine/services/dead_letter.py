"""Dead-letter handler: the terminal failure path of a job.

Runs exactly once per job id. In one transaction it records the failure, refunds the
debited credits and marks the job failed; the user is notified after commit.
A second invocation for the same job finds the existing record and does nothing.
"""

import traceback
from typing import Callable, Optional
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError

from vitrine.models.failed_job import FailedJobRecord
from vitrine.models.job import SourceChannel
from vitrine.models.ledger import CreditLedgerEntry, LedgerEntryType, refund_key
from vitrine.models.notification import NotificationKind
from vitrine.services.exceptions import error_code_for
from vitrine.services.messages import get_message
from vitrine.services.notifications import Notifier

logger = structlog.get_logger(__name__)


class DeadLetterHandler:
    """Records terminal failures and compensates the user."""

    def __init__(self, uow_factory: Callable, notifier: Notifier):
        self.uow_factory = uow_factory
        self.notifier = notifier

    async def handle(
        self,
        job_id: UUID,
        error: BaseException,
        attempt_count: int,
        error_code: Optional[str] = None,
    ) -> bool:
        """Dead-letter a job.

        Args:
            job_id: Job that exhausted its retries or hit a non-retryable error
            error: The failure that ended processing
            attempt_count: Delivery attempt the failure happened on
            error_code: Overrides the code derived from the exception

        Returns:
            True if this call performed the dead-lettering, False if it was already done

        Raises:
            LookupError: If the job does not exist
        """
        code = error_code or error_code_for(error)
        message = str(error) or type(error).__name__
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))

        try:
            async with await self.uow_factory() as uow:
                if await uow.failed_jobs.get_by_job_id(job_id) is not None:
                    logger.info("dlq.already_handled", job_id=str(job_id))
                    return False

                job = await uow.jobs.get_by_id(job_id)
                if job is None:
                    raise LookupError(f"Job {job_id} not found")

                await uow.failed_jobs.add(
                    FailedJobRecord(
                        job_id=job.id,
                        account_id=job.account_id,
                        correlation_id=job.correlation_id,
                        error_code=code,
                        error_message=message[:1000],
                        attempt_count=attempt_count,
                        job_snapshot=job.model_dump(mode="json"),
                        stack_trace=stack,
                        refunded_credits=job.credits_debited,
                    )
                )

                debits = await uow.ledger.list_for_job(job.id, LedgerEntryType.DEBIT)
                refund_amount = -sum(entry.amount for entry in debits)
                if refund_amount > 0:
                    await uow.ledger.add(
                        CreditLedgerEntry(
                            account_id=job.account_id,
                            entry_type=LedgerEntryType.REFUND,
                            amount=refund_amount,
                            job_id=job.id,
                            idempotency_key=refund_key(job.id),
                            description=f"Refund for failed job ({code})",
                        )
                    )

                if not job.is_terminal:
                    job.mark_failed(code, message)
                uow.session.add(job)

                account = await uow.accounts.get_by_id(job.account_id)
                language = account.language if account else "fr"
                account_id = job.account_id
                channel: SourceChannel = job.source_channel
                correlation_id = job.correlation_id

        except IntegrityError:
            # A concurrent delivery inserted the record (or refund) first
            logger.info("dlq.already_handled", job_id=str(job_id), reason="concurrent_insert")
            return False

        logger.error(
            "dlq.job_failed",
            job_id=str(job_id),
            correlation_id=correlation_id,
            error_code=code,
            error_message=message,
            attempt_count=attempt_count,
            refunded_credits=refund_amount,
        )

        await self.notifier.notify(
            account_id,
            job_id,
            NotificationKind.FAILED,
            get_message("job.refunded", language),
            channel,
        )
        return True
