"""Work queue tests.

Tests focus on delivery bookkeeping:
- claim locks a message and counts the delivery
- nack reschedules with backoff, then marks the message dead at max attempts
- defer keeps a message past max attempts until its dead-letter retries run out
- abandoned locks are reclaimed
- the high-priority lane is served first
"""

from datetime import timedelta

import pytest

from vitrine.models.account import Account
from vitrine.models.job import (
    BackgroundStyle,
    Job,
    JobPriority,
    ProductCategory,
    SourceChannel,
    TemplateLayout,
)
from vitrine.models.queue_message import QueueMessageStatus
from vitrine.services.work_queue import WorkQueue


@pytest.fixture
def work_queue(clock) -> WorkQueue:
    return WorkQueue(
        max_attempts=3,
        backoff_seconds=(1.0, 2.0, 5.0),
        jitter_seconds=0.5,
        lock_timeout_seconds=300,
        clock=clock,
        rng=lambda: 0.0,
    )


@pytest.fixture
def publish(uow_factory, work_queue):
    async def _publish(priority: JobPriority = JobPriority.LOW, key: str = "api:q:req:1") -> Job:
        async with await uow_factory() as uow:
            account = await uow.accounts.add(Account())
            job = await uow.jobs.add(
                Job(
                    account_id=account.id,
                    idempotency_key=key,
                    correlation_id=f"corr-{key}",
                    source_channel=SourceChannel.WEB_APP,
                    category=ProductCategory.BEAUTY,
                    background_style=BackgroundStyle.STUDIO_WHITE,
                    template_layout=TemplateLayout.A,
                    input_image_key="uploads/q.jpg",
                    priority=priority,
                )
            )
            await work_queue.publish(uow, job)
        return job

    return _publish


async def claim(uow_factory, work_queue, worker_id="worker-1", limit=10):
    async with await uow_factory() as uow:
        return await work_queue.claim(uow, worker_id, limit=limit)


async def message_for(uow_factory, job_id):
    async with await uow_factory() as uow:
        return await uow.queue.get_by_job_id(job_id)


def test_backoff_schedule_with_jitter():
    queue = WorkQueue(backoff_seconds=(1.0, 2.0, 5.0), jitter_seconds=0.5, rng=lambda: 0.5)

    assert queue.backoff_for(1) == timedelta(seconds=1.25)
    assert queue.backoff_for(2) == timedelta(seconds=2.25)
    assert queue.backoff_for(3) == timedelta(seconds=5.25)
    assert queue.backoff_for(10) == timedelta(seconds=5.25)


@pytest.mark.asyncio
async def test_claim_locks_and_counts_delivery(uow_factory, work_queue, publish):
    job = await publish()

    deliveries = await claim(uow_factory, work_queue)

    assert len(deliveries) == 1
    delivery = deliveries[0]
    assert delivery.job_id == job.id
    assert delivery.attempt == 1
    assert delivery.max_attempts == 3
    assert delivery.correlation_id == job.correlation_id
    assert not delivery.is_last_attempt

    # Locked: a second worker gets nothing
    assert await claim(uow_factory, work_queue, worker_id="worker-2") == []

    message = await message_for(uow_factory, job.id)
    assert message.status == QueueMessageStatus.PROCESSING
    assert message.locked_by == "worker-1"


@pytest.mark.asyncio
async def test_ack_completes_message(uow_factory, work_queue, publish):
    job = await publish()
    [delivery] = await claim(uow_factory, work_queue)

    async with await uow_factory() as uow:
        await work_queue.ack(uow, delivery.message_id)

    message = await message_for(uow_factory, job.id)
    assert message.status == QueueMessageStatus.COMPLETED
    assert message.locked_by is None
    assert await claim(uow_factory, work_queue) == []


@pytest.mark.asyncio
async def test_nack_backs_off_then_dies_at_max_attempts(uow_factory, work_queue, publish, clock):
    """Scenario: three deliveries, each failing; redelivery only after its backoff."""
    job = await publish()

    for attempt, backoff in ((1, 1), (2, 2)):
        [delivery] = await claim(uow_factory, work_queue)
        assert delivery.attempt == attempt

        async with await uow_factory() as uow:
            run_after = await work_queue.nack(uow, delivery.message_id, "TransientError: boom")
        assert run_after == clock.now + timedelta(seconds=backoff)

        # Still backing off
        assert await claim(uow_factory, work_queue) == []
        clock.advance(seconds=backoff)

    [last] = await claim(uow_factory, work_queue)
    assert last.attempt == 3
    assert last.is_last_attempt

    async with await uow_factory() as uow:
        assert await work_queue.nack(uow, last.message_id, "TransientError: boom") is None

    message = await message_for(uow_factory, job.id)
    assert message.status == QueueMessageStatus.DEAD
    assert message.last_error == "TransientError: boom"
    clock.advance(hours=1)
    assert await claim(uow_factory, work_queue) == []


@pytest.mark.asyncio
async def test_defer_redelivers_past_max_attempts_until_capped(uow_factory, work_queue, publish, clock):
    """Scenario: retries are spent, but dead-letter handling keeps failing."""
    work_queue.dead_letter_retries = 1
    job = await publish()

    for backoff in (1, 2):
        [delivery] = await claim(uow_factory, work_queue)
        async with await uow_factory() as uow:
            await work_queue.nack(uow, delivery.message_id, "TransientError: boom")
        clock.advance(seconds=backoff)

    [last] = await claim(uow_factory, work_queue)
    assert last.is_last_attempt
    assert not last.retries_exhausted
    async with await uow_factory() as uow:
        run_after = await work_queue.defer(uow, last.message_id, "OperationalError: db down")
    assert run_after == clock.now + timedelta(seconds=5)
    assert (await message_for(uow_factory, job.id)).status == QueueMessageStatus.PENDING

    clock.advance(seconds=5)
    [extra] = await claim(uow_factory, work_queue)
    assert extra.attempt == 4
    assert extra.retries_exhausted
    async with await uow_factory() as uow:
        assert await work_queue.defer(uow, extra.message_id, "OperationalError: db down") is None

    message = await message_for(uow_factory, job.id)
    assert message.status == QueueMessageStatus.DEAD
    assert message.last_error == "OperationalError: db down"


@pytest.mark.asyncio
async def test_stale_lock_is_reclaimed(uow_factory, work_queue, publish, clock):
    job = await publish()
    await claim(uow_factory, work_queue, worker_id="crashed-worker")

    clock.advance(seconds=301)
    deliveries = await claim(uow_factory, work_queue, worker_id="worker-2")

    assert [d.job_id for d in deliveries] == [job.id]
    assert deliveries[0].attempt == 2
    message = await message_for(uow_factory, job.id)
    assert message.locked_by == "worker-2"


@pytest.mark.asyncio
async def test_release_stale_on_startup(uow_factory, work_queue, publish, clock):
    job = await publish()
    await claim(uow_factory, work_queue, worker_id="crashed-worker")

    async with await uow_factory() as uow:
        assert await work_queue.release_stale(uow) == 0

    clock.advance(minutes=10)
    async with await uow_factory() as uow:
        assert await work_queue.release_stale(uow) == 1

    message = await message_for(uow_factory, job.id)
    assert message.status == QueueMessageStatus.PENDING
    assert message.attempts == 1


@pytest.mark.asyncio
async def test_high_priority_lane_first(uow_factory, work_queue, publish):
    low = await publish(JobPriority.LOW, key="api:q:req:low")
    high = await publish(JobPriority.HIGH, key="api:q:req:high")

    [first] = await claim(uow_factory, work_queue, limit=1)
    [second] = await claim(uow_factory, work_queue, limit=1)

    assert first.job_id == high.id
    assert second.job_id == low.id
