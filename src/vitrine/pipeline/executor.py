"""Pipeline executor: runs one delivery of one job through the fixed stages.

The executor decides retry vs terminal for a failure; the work queue owns attempt
counting and backoff. Redeliveries of a job that already reached a terminal state are
skipped, which keeps at-least-once delivery safe. A delivery past the last attempt only
finishes the dead-letter step that the last attempt could not commit.
"""

import time
from enum import Enum
from typing import Callable, Optional
from uuid import UUID

import structlog

from vitrine.models.job import JobStatus
from vitrine.models.notification import NotificationKind
from vitrine.pipeline.context import ProcessingContext
from vitrine.pipeline.stage_timer import stage_timer
from vitrine.pipeline.stages import PipelineStages
from vitrine.services.dead_letter import DeadLetterHandler
from vitrine.services.exceptions import (
    JobCancelledError,
    TransientError,
    error_code_for,
    is_retryable,
)
from vitrine.services.messages import get_message
from vitrine.services.notifications import Notifier
from vitrine.services.work_queue import Delivery

logger = structlog.get_logger(__name__)


class PipelineOutcome(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DEAD_LETTERED = "dead_lettered"
    SKIPPED = "skipped"


class PipelineExecutor:
    """Executes the stage list for queue deliveries."""

    def __init__(
        self,
        uow_factory: Callable,
        stages: PipelineStages,
        dead_letter: DeadLetterHandler,
        notifier: Notifier,
    ):
        self.uow_factory = uow_factory
        self.stages = stages
        self.dead_letter = dead_letter
        self.notifier = notifier

    async def run(self, delivery: Delivery) -> PipelineOutcome:
        """Process one delivery.

        Returns:
            The outcome when the delivery is finished with (ack it)

        Raises:
            Exception: The stage error when the job should be retried (nack it)
        """
        log = logger.bind(
            job_id=str(delivery.job_id),
            correlation_id=delivery.correlation_id,
            attempt=delivery.attempt,
        )

        async with await self.uow_factory() as uow:
            job = await uow.jobs.get_by_id(delivery.job_id)
            if job is None:
                log.warning("pipeline.job_missing")
                return PipelineOutcome.SKIPPED
            if job.is_terminal:
                log.info("pipeline.job_skipped", status=job.status.value)
                return PipelineOutcome.SKIPPED

            if delivery.retries_exhausted:
                last_error = TransientError(
                    job.last_error_message or "Delivery attempts exhausted",
                    job.last_error_code or "RETRIES_EXHAUSTED",
                )
            else:
                job.mark_processing(delivery.attempt)
                uow.session.add(job)
                ctx = ProcessingContext.from_job(job, delivery.attempt)

        if delivery.retries_exhausted:
            # The last attempt failed but its dead-letter step did not commit
            log.warning("pipeline.dead_letter_resumed", error_code=last_error.error_code)
            await self._dead_letter(
                delivery.job_id, delivery.correlation_id, last_error, delivery.max_attempts
            )
            return PipelineOutcome.DEAD_LETTERED

        log.info("pipeline.started", max_attempts=delivery.max_attempts)
        started = time.perf_counter()

        try:
            for name, stage in self.stages.ordered():
                await self._ensure_not_cancelled(ctx)
                async with stage_timer(
                    ctx.stage_durations, name, job_id=str(ctx.job_id), correlation_id=ctx.correlation_id
                ):
                    await stage(ctx)

        except JobCancelledError:
            await self._save_durations(ctx)
            log.info("pipeline.cancelled", stages_run=list(ctx.stage_durations))
            return PipelineOutcome.CANCELLED

        except Exception as e:
            return await self._handle_failure(ctx, delivery, e)

        duration_ms = int((time.perf_counter() - started) * 1000)
        return await self._complete(ctx, duration_ms)

    async def _ensure_not_cancelled(self, ctx: ProcessingContext) -> None:
        async with await self.uow_factory() as uow:
            status = await uow.jobs.get_status(ctx.job_id)
        if status == JobStatus.CANCELLED:
            raise JobCancelledError(f"Job {ctx.job_id} was cancelled")

    async def _save_durations(self, ctx: ProcessingContext, error: Optional[Exception] = None) -> None:
        async with await self.uow_factory() as uow:
            job = await uow.jobs.get_by_id(ctx.job_id)
            if job is not None:
                job.stage_durations = dict(ctx.stage_durations)
                if error is not None:
                    # Kept on the job so a redelivery can finish the dead-letter step
                    job.last_error_code = error_code_for(error)
                    job.last_error_message = (str(error) or type(error).__name__)[:1000]
                uow.session.add(job)

    async def _dead_letter(
        self, job_id: UUID, correlation_id: str, error: Exception, attempt_count: int
    ) -> None:
        try:
            await self.dead_letter.handle(job_id, error, attempt_count, error_code_for(error))
        except Exception as e:
            logger.error(
                "pipeline.dead_letter_failed",
                job_id=str(job_id),
                correlation_id=correlation_id,
                error_type=type(e).__name__,
                error=str(e),
                exc_info=True,
            )
            raise

    async def _handle_failure(
        self, ctx: ProcessingContext, delivery: Delivery, error: Exception
    ) -> PipelineOutcome:
        code = error_code_for(error)
        retryable = is_retryable(error)
        failed_stage = next(reversed(ctx.stage_durations), None)

        if not retryable or delivery.is_last_attempt:
            await self._save_durations(ctx, error)
            logger.error(
                "pipeline.stage.failed",
                job_id=str(ctx.job_id),
                correlation_id=ctx.correlation_id,
                stage=failed_stage,
                error_code=code,
                error=str(error),
                retryable=retryable,
                attempt=delivery.attempt,
                terminal=True,
            )
            await self._dead_letter(ctx.job_id, ctx.correlation_id, error, delivery.attempt)
            return PipelineOutcome.DEAD_LETTERED

        async with await self.uow_factory() as uow:
            job = await uow.jobs.get_by_id(ctx.job_id)
            if job is not None:
                job.stage_durations = dict(ctx.stage_durations)
                if job.status == JobStatus.PROCESSING:
                    job.mark_requeued(code, str(error) or type(error).__name__)
                uow.session.add(job)

        logger.warning(
            "pipeline.stage.failed",
            job_id=str(ctx.job_id),
            correlation_id=ctx.correlation_id,
            stage=failed_stage,
            error_code=code,
            error=str(error),
            retryable=True,
            attempt=delivery.attempt,
            max_attempts=delivery.max_attempts,
        )
        raise error

    async def _complete(self, ctx: ProcessingContext, duration_ms: int) -> PipelineOutcome:
        async with await self.uow_factory() as uow:
            job = await uow.jobs.get_by_id(ctx.job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                # Cancelled while the last stage was running
                logger.info(
                    "pipeline.cancelled",
                    job_id=str(ctx.job_id),
                    status=job.status.value if job else None,
                )
                return PipelineOutcome.CANCELLED

            job.stage_durations = dict(ctx.stage_durations)
            job.model_used = ctx.model_used
            job.provider_used = ctx.provider_used
            job.mark_completed(duration_ms)
            uow.session.add(job)

            account = await uow.accounts.get_by_id(job.account_id)
            language = account.language if account else "fr"

        logger.info(
            "pipeline.completed",
            job_id=str(ctx.job_id),
            correlation_id=ctx.correlation_id,
            duration_ms=duration_ms,
            assets=len(ctx.assets),
            model=ctx.model_used,
            provider=ctx.provider_used,
            placeholder=ctx.used_placeholder,
        )

        await self.notifier.notify(
            ctx.account_id,
            ctx.job_id,
            NotificationKind.COMPLETED,
            get_message("job.completed", language),
            ctx.source_channel,
        )
        return PipelineOutcome.COMPLETED
