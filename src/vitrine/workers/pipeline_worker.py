"""Pipeline worker: pulls deliveries from the work queue and runs them.

Each poll claims a batch in one short transaction (FOR UPDATE SKIP LOCKED, so several
workers can poll the same table), then processes the deliveries concurrently. Every
delivery ends with exactly one queue transition:

- ack: completed, dead-lettered, cancelled or skipped
- nack: the executor re-raised a retryable error; the queue schedules the redelivery
  with backoff, or marks the message dead once its attempts are exhausted
- defer: dead-letter handling failed on the last attempt; the message is redelivered
  until the dead-letter record commits, so the job is never left without one
"""

import asyncio
import os
import socket
from typing import Callable, Optional

import httpx
import structlog

from vitrine.core.config import Settings
from vitrine.pipeline.executor import PipelineExecutor
from vitrine.pipeline.stages import PipelineStages
from vitrine.services.dead_letter import DeadLetterHandler
from vitrine.services.image_generation.base import ImageProvider
from vitrine.services.image_generation.model_router import ModelRouter
from vitrine.services.image_generation.openrouter_client import OpenRouterImageProvider
from vitrine.services.image_generation.replicate_client import ReplicateImageProvider
from vitrine.services.notifications import ChannelNotifier, Notifier
from vitrine.services.storage import BlobStore, ObjectStorage
from vitrine.services.work_queue import Delivery, WorkQueue
from vitrine.uow import create_uow_factory

logger = structlog.get_logger(__name__)


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


def build_work_queue(settings: Settings) -> WorkQueue:
    return WorkQueue(
        max_attempts=settings.queue_max_attempts,
        backoff_seconds=settings.queue_backoff_seconds,
        jitter_seconds=settings.queue_backoff_jitter_seconds,
        lock_timeout_seconds=settings.queue_lock_timeout_seconds,
        dead_letter_retries=settings.queue_dead_letter_retries,
    )


def build_providers(settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> dict[str, ImageProvider]:
    """Image providers for which credentials are configured."""
    providers: dict[str, ImageProvider] = {}
    if settings.openrouter_api_key:
        providers["openrouter"] = OpenRouterImageProvider(
            settings.openrouter_api_key, settings.openrouter_base_url, http_client=http_client
        )
    if settings.replicate_api_token:
        providers["replicate"] = ReplicateImageProvider(
            settings.replicate_api_token, http_client=http_client
        )
    return providers


def build_pipeline_executor(
    uow_factory: Callable,
    settings: Settings,
    storage: Optional[BlobStore] = None,
    providers: Optional[dict[str, ImageProvider]] = None,
    notifier: Optional[Notifier] = None,
) -> PipelineExecutor:
    """Wire the executor. Collaborators not passed in are built from settings."""
    storage = storage or ObjectStorage.from_settings(settings)
    providers = providers if providers is not None else build_providers(settings)
    notifier = notifier or ChannelNotifier(uow_factory, settings.telegram_bot_token)

    router = ModelRouter(uow_factory, providers, settings)
    stages = PipelineStages(uow_factory, storage, router, settings)
    dead_letter = DeadLetterHandler(uow_factory, notifier)
    return PipelineExecutor(uow_factory, stages, dead_letter, notifier)


async def process_delivery(
    delivery: Delivery,
    executor: PipelineExecutor,
    uow_factory: Callable,
    work_queue: WorkQueue,
) -> None:
    """Run one delivery and settle it on the queue."""
    try:
        outcome = await executor.run(delivery)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        error = f"{type(e).__name__}: {e}"
        async with await uow_factory() as uow:
            if delivery.is_last_attempt:
                # Terminal handling itself failed; the job still needs its dead-letter record
                await work_queue.defer(uow, delivery.message_id, error)
            else:
                await work_queue.nack(uow, delivery.message_id, error)
        return

    async with await uow_factory() as uow:
        await work_queue.ack(uow, delivery.message_id)

    logger.debug(
        "worker.delivery_settled",
        job_id=str(delivery.job_id),
        attempt=delivery.attempt,
        outcome=outcome.value,
    )


async def process_batch(
    uow_factory: Callable,
    work_queue: WorkQueue,
    executor: PipelineExecutor,
    worker_id: str,
    batch_size: int,
) -> int:
    """Claim and process one batch.

    Returns:
        Number of deliveries claimed
    """
    async with await uow_factory() as uow:
        deliveries = await work_queue.claim(uow, worker_id, limit=batch_size)

    if not deliveries:
        return 0

    tasks = [process_delivery(d, executor, uow_factory, work_queue) for d in deliveries]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    # Failures inside a delivery are settled there; anything here escaped the settle step
    for delivery, result in zip(deliveries, results):
        if isinstance(result, Exception):
            logger.error(
                "worker.delivery_failed",
                job_id=str(delivery.job_id),
                message_id=str(delivery.message_id),
                error=str(result),
                error_type=type(result).__name__,
            )

    return len(deliveries)


async def run_pipeline_worker(
    session_factory: Callable,
    settings: Settings,
    executor: Optional[PipelineExecutor] = None,
    work_queue: Optional[WorkQueue] = None,
    worker_id: Optional[str] = None,
) -> None:
    """Main worker loop.

    Workflow:
    1. Release messages locked by crashed workers
    2. Poll at POLL_INTERVAL_SECONDS, claiming up to WORKER_BATCH_SIZE deliveries
    3. Handle CancelledError for graceful shutdown

    Args:
        session_factory: Factory function that creates database sessions
        settings: Application settings (poll interval, batch size, queue policy)
        executor: Pipeline executor, built from settings when omitted
        work_queue: Queue policy, built from settings when omitted
        worker_id: Lock owner name, hostname:pid when omitted
    """
    uow_factory = create_uow_factory(session_factory)
    work_queue = work_queue or build_work_queue(settings)
    executor = executor or build_pipeline_executor(uow_factory, settings)
    worker_id = worker_id or default_worker_id()

    async with await uow_factory() as uow:
        released = await work_queue.release_stale(uow)
    if released:
        logger.info("worker.recovery", stale_messages_released=released)

    logger.info(
        "worker.started",
        worker_id=worker_id,
        poll_interval=settings.poll_interval_seconds,
        batch_size=settings.worker_batch_size,
    )

    try:
        while True:
            try:
                claimed = await process_batch(
                    uow_factory, work_queue, executor, worker_id, settings.worker_batch_size
                )

                # Drain a busy queue without waiting; poll an idle one
                if claimed < settings.worker_batch_size:
                    await asyncio.sleep(settings.poll_interval_seconds)

            except asyncio.CancelledError:
                # Propagate cancellation for graceful shutdown
                raise

            except Exception as e:
                logger.error(
                    "worker.error",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                # Back off 5 seconds before retrying
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker_id=worker_id)
        raise
