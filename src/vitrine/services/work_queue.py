"""Durable work queue backed by the queue_messages table.

At-least-once delivery: a message is claimed with FOR UPDATE SKIP LOCKED, locked to
a worker, and either acked, rescheduled with backoff (nack) or marked dead once its
delivery attempts are exhausted. Locks older than the lock timeout are reclaimed, so a
crashed worker's message is redelivered.

The queue owns attempt counting and backoff. Consumers only decide success vs failure.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Sequence
from uuid import UUID

import structlog

from vitrine.core.timezone import utcnow
from vitrine.models.job import Job
from vitrine.models.queue_message import QueueMessage, QueueMessageStatus
from vitrine.services.pricing import queue_priority
from vitrine.uow import UnitOfWork

logger = structlog.get_logger(__name__)


@dataclass
class Delivery:
    """One claimed message, detached from the session that claimed it."""

    message_id: UUID
    job_id: UUID
    attempt: int
    max_attempts: int
    payload: dict[str, Any]

    @property
    def correlation_id(self) -> str:
        return self.payload.get("correlation_id", "")

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    @property
    def retries_exhausted(self) -> bool:
        """Redelivered after the last attempt: only the dead-letter path may run."""
        return self.attempt > self.max_attempts


def build_payload(job: Job) -> dict[str, Any]:
    """Message contract: everything the pipeline needs without re-reading the request."""
    return {
        "job_id": str(job.id),
        "account_id": str(job.account_id),
        "correlation_id": job.correlation_id,
        "priority": job.priority.value,
        "category": job.category.value,
        "background_style": job.background_style.value,
        "template_layout": job.template_layout.value,
        "mannequin_mode": job.mannequin_mode.value,
        "source_channel": job.source_channel.value,
        "custom_prompt": job.custom_prompt,
        "overlays": job.overlays,
    }


class WorkQueue:
    """Retry policy and delivery bookkeeping for pipeline work."""

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_seconds: Sequence[float] = (1.0, 2.0, 5.0),
        jitter_seconds: float = 0.5,
        lock_timeout_seconds: int = 300,
        dead_letter_retries: int = 5,
        clock: Callable[[], datetime] = utcnow,
        rng: Callable[[], float] = random.random,
    ):
        self.max_attempts = max_attempts
        self.backoff_seconds = list(backoff_seconds)
        self.jitter_seconds = jitter_seconds
        self.lock_timeout = timedelta(seconds=lock_timeout_seconds)
        self.dead_letter_retries = dead_letter_retries
        self.clock = clock
        self.rng = rng

    def backoff_for(self, attempt: int) -> timedelta:
        """Delay before redelivery after the given (1-based) attempt failed."""
        index = min(max(attempt, 1), len(self.backoff_seconds)) - 1
        delay = self.backoff_seconds[index] + self.rng() * self.jitter_seconds
        return timedelta(seconds=delay)

    async def publish(self, uow: UnitOfWork, job: Job) -> QueueMessage:
        """Enqueue a job inside the caller's transaction."""
        message = QueueMessage(
            job_id=job.id,
            priority=queue_priority(job.priority),
            payload=build_payload(job),
            max_attempts=self.max_attempts,
            run_after=self.clock(),
        )
        await uow.queue.add(message)
        logger.info(
            "queue.published",
            job_id=str(job.id),
            correlation_id=job.correlation_id,
            priority=message.priority,
        )
        return message

    async def claim(self, uow: UnitOfWork, worker_id: str, limit: int = 10) -> list[Delivery]:
        """Lock up to `limit` runnable messages for this worker and count the delivery."""
        now = self.clock()
        messages = await uow.queue.get_runnable(now, now - self.lock_timeout, limit=limit)

        deliveries = []
        for message in messages:
            if message.status == QueueMessageStatus.PROCESSING:
                logger.warning(
                    "queue.stale_lock_reclaimed",
                    message_id=str(message.id),
                    job_id=str(message.job_id),
                    previous_worker=message.locked_by,
                )
            message.status = QueueMessageStatus.PROCESSING
            message.locked_by = worker_id
            message.locked_at = now
            message.attempts += 1
            message.updated_at = now
            uow.session.add(message)
            deliveries.append(
                Delivery(
                    message_id=message.id,
                    job_id=message.job_id,
                    attempt=message.attempts,
                    max_attempts=message.max_attempts,
                    payload=dict(message.payload),
                )
            )
        await uow.session.flush()
        return deliveries

    async def ack(self, uow: UnitOfWork, message_id: UUID) -> None:
        """Mark a delivery as done (success, dead-lettered or skipped)."""
        message = await uow.queue.get_by_id(message_id)
        if message is None:
            return
        message.status = QueueMessageStatus.COMPLETED
        message.locked_by = None
        message.locked_at = None
        message.updated_at = self.clock()
        uow.session.add(message)

    async def nack(self, uow: UnitOfWork, message_id: UUID, error: str) -> Optional[datetime]:
        """Schedule redelivery with backoff, or mark dead when attempts are exhausted.

        Returns:
            The next delivery time, or None if the message is now dead
        """
        message = await uow.queue.get_by_id(message_id)
        if message is None:
            return None

        now = self.clock()
        message.locked_by = None
        message.locked_at = None
        message.last_error = error[:1000]
        message.updated_at = now

        if message.attempts < message.max_attempts:
            message.status = QueueMessageStatus.PENDING
            message.run_after = now + self.backoff_for(message.attempts)
            uow.session.add(message)
            logger.warning(
                "queue.retry_scheduled",
                message_id=str(message.id),
                job_id=str(message.job_id),
                attempt=message.attempts,
                max_attempts=message.max_attempts,
                run_after=message.run_after.isoformat(),
            )
            return message.run_after

        message.status = QueueMessageStatus.DEAD
        uow.session.add(message)
        logger.error(
            "queue.message_dead",
            message_id=str(message.id),
            job_id=str(message.job_id),
            attempts=message.attempts,
        )
        return None

    async def defer(self, uow: UnitOfWork, message_id: UUID, error: str) -> Optional[datetime]:
        """Reschedule a delivery whose terminal handling did not commit.

        The attempt cap does not apply: the job's retries are already spent, but its
        dead-letter path (refund included) still has to run, so the message stays
        pending for up to dead_letter_retries extra deliveries before it is marked dead.

        Returns:
            The next delivery time, or None if the message is now dead
        """
        message = await uow.queue.get_by_id(message_id)
        if message is None:
            return None

        now = self.clock()
        message.locked_by = None
        message.locked_at = None
        message.last_error = error[:1000]
        message.updated_at = now

        if message.attempts < message.max_attempts + self.dead_letter_retries:
            message.status = QueueMessageStatus.PENDING
            message.run_after = now + self.backoff_for(message.attempts)
            uow.session.add(message)
            logger.warning(
                "queue.dead_letter_retry_scheduled",
                message_id=str(message.id),
                job_id=str(message.job_id),
                attempt=message.attempts,
                run_after=message.run_after.isoformat(),
            )
            return message.run_after

        message.status = QueueMessageStatus.DEAD
        uow.session.add(message)
        logger.critical(
            "queue.dead_letter_abandoned",
            message_id=str(message.id),
            job_id=str(message.job_id),
            attempts=message.attempts,
            error=message.last_error,
        )
        return None

    async def release_stale(self, uow: UnitOfWork) -> int:
        """Return messages abandoned by crashed workers to pending."""
        return await uow.queue.release_stale(self.clock() - self.lock_timeout)
