"""Tests for NotificationQueue — eligibility, ordering, atomic claims, retries, cancellation."""

import asyncio
import random
from datetime import timedelta

import pytest

from notifications.notification.notification import NotificationPriority, NotificationStatus
from shared.errors import NotificationNotFound


async def _enqueue(queue, **overrides):
    defaults = {
        "channel": "sms",
        "recipient": "+15550100",
        "message_body": "Your ride has been confirmed.",
        "metadata": {"correlation_id": "ride-1", "notification_type": "RideStatusUpdate"},
    }
    defaults.update(overrides)
    return await queue.enqueue(**defaults)


async def _sent(queue, ref="SM-1", **overrides):
    notification_id = await _enqueue(queue, **overrides)
    await queue.claim(notification_id)
    await queue.mark_sent(notification_id, ref)
    return notification_id


async def _fail_attempt(queue, clock, notification_id, reason="Gateway timeout", **kwargs):
    """Claim the item once it is due and record a failed attempt."""
    item = await queue.get(notification_id)
    if item.scheduled_time is not None and item.scheduled_time > clock.now:
        clock.now = item.scheduled_time
    assert await queue.claim(notification_id)
    return await queue.mark_failed(notification_id, reason, **kwargs)


class _CountingDispatcher:
    def __init__(self):
        self.calls = 0

    def ensure_running(self):
        self.calls += 1
        return True


# ---------------------------------------------------------------------------
# Enqueue
# ---------------------------------------------------------------------------
class TestEnqueue:
    async def test_enqueued_item_is_pending(self, queue, clock):
        notification_id = await _enqueue(queue)

        item = await queue.get(notification_id)
        assert item.status == NotificationStatus.PENDING
        assert item.retry_count == 0
        assert item.max_retries == 3
        assert item.correlation_id == "ride-1"
        assert item.created_at == clock.now

    async def test_enqueue_restarts_the_dispatcher(self, queue):
        dispatcher = _CountingDispatcher()
        queue.attach_dispatcher(dispatcher)

        await _enqueue(queue)
        await _enqueue(queue)

        assert dispatcher.calls == 2

    async def test_duplicate_idempotency_key_returns_existing_item(self, queue):
        first = await _enqueue(queue, idempotency_key="RiderPickedUp:7:RideStatusUpdate:rider-1:sms")
        second = await _enqueue(queue, idempotency_key="RiderPickedUp:7:RideStatusUpdate:rider-1:sms")

        assert first == second
        assert (await queue.stats())["total"] == 1

    async def test_items_without_key_are_never_deduplicated(self, queue):
        await _enqueue(queue)
        await _enqueue(queue)
        assert (await queue.stats())["total"] == 2

    async def test_unknown_item(self, queue):
        with pytest.raises(NotificationNotFound):
            await queue.get("missing")


# ---------------------------------------------------------------------------
# Eligibility and ordering
# ---------------------------------------------------------------------------
class TestListEligible:
    async def test_scheduled_item_becomes_eligible_at_its_time(self, queue, clock):
        start = clock.now
        notification_id = await _enqueue(queue, scheduled_time=start + timedelta(seconds=10))

        clock.now = start + timedelta(seconds=1)
        assert notification_id not in [i.id for i in await queue.list_eligible(10)]

        clock.now = start + timedelta(seconds=11)
        assert notification_id in [i.id for i in await queue.list_eligible(10)]

    async def test_highest_priority_first(self, queue):
        ids = {}
        for name, priority in [
            ("low", NotificationPriority.LOW),
            ("urgent", NotificationPriority.URGENT),
            ("medium", NotificationPriority.MEDIUM),
            ("high", NotificationPriority.HIGH),
        ]:
            ids[await _enqueue(queue, priority=priority)] = name

        eligible = await queue.list_eligible(10)

        assert [ids[item.id] for item in eligible] == ["urgent", "high", "medium", "low"]

    async def test_fifo_within_a_priority(self, queue, clock):
        first = await _enqueue(queue)
        clock.advance(seconds=1)
        second = await _enqueue(queue)
        third = await _enqueue(queue)  # same instant as second

        assert [i.id for i in await queue.list_eligible(10)] == [first, second, third]

    async def test_limit(self, queue):
        for _ in range(5):
            await _enqueue(queue)
        assert len(await queue.list_eligible(2)) == 2
        assert await queue.list_eligible(0) == []

    async def test_only_pending_items(self, queue):
        claimed = await _enqueue(queue)
        await queue.claim(claimed)
        waiting = await _enqueue(queue)

        assert [i.id for i in await queue.list_eligible(10)] == [waiting]


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------
class TestClaim:
    async def test_claim_moves_to_processing(self, queue):
        notification_id = await _enqueue(queue)

        assert await queue.claim(notification_id)
        assert (await queue.get(notification_id)).status == NotificationStatus.PROCESSING

    async def test_concurrent_claims_have_one_winner(self, queue):
        notification_id = await _enqueue(queue)

        results = await asyncio.gather(queue.claim(notification_id), queue.claim(notification_id))

        assert sorted(results) == [False, True]
        assert (await queue.get(notification_id)).status == NotificationStatus.PROCESSING

    async def test_many_concurrent_claimers(self, queue):
        ids = [await _enqueue(queue) for _ in range(3)]

        results = await asyncio.gather(*[queue.claim(i) for i in ids for _ in range(4)])

        assert sum(results) == 3

    async def test_claim_unknown_item(self, queue):
        assert not await queue.claim("missing")


# ---------------------------------------------------------------------------
# Sent / failed
# ---------------------------------------------------------------------------
class TestMarkSent:
    async def test_provider_reference_is_stored(self, queue):
        notification_id = await _sent(queue, ref="SM-42")

        item = await queue.find_by_provider_ref("SM-42")
        assert item.id == notification_id
        assert item.status == NotificationStatus.SENT
        assert item.metadata["provider_message_ref"] == "SM-42"

    async def test_sent_result_for_pending_item_is_dropped(self, queue):
        notification_id = await _enqueue(queue)
        assert not await queue.mark_sent(notification_id, "SM-1")
        assert (await queue.get(notification_id)).status == NotificationStatus.PENDING


class TestMarkFailed:
    async def test_first_failure_requeues_after_one_second(self, queue, clock):
        notification_id = await _enqueue(queue)

        assert await _fail_attempt(queue, clock, notification_id)

        item = await queue.get(notification_id)
        assert item.status == NotificationStatus.PENDING
        assert item.retry_count == 1
        assert item.scheduled_time == clock.now + timedelta(seconds=1)
        assert item.last_error == "Gateway timeout"
        assert item.retry_history[0]["next_attempt_at"] == item.scheduled_time.isoformat()

    async def test_requeued_item_waits_for_backoff(self, queue, clock):
        notification_id = await _enqueue(queue)
        await _fail_attempt(queue, clock, notification_id)

        assert await queue.list_eligible(10) == []
        clock.advance(seconds=1)
        assert [i.id for i in await queue.list_eligible(10)] == [notification_id]

    async def test_three_failures_exhaust_retries(self, queue, clock):
        notification_id = await _enqueue(queue, max_retries=3)

        for _ in range(3):
            assert await _fail_attempt(queue, clock, notification_id)

        item = await queue.get(notification_id)
        assert item.status == NotificationStatus.FAILED
        assert item.retry_count == 3
        assert len(item.retry_history) == 3

        # A fourth report changes nothing
        assert not await queue.mark_failed(notification_id, "Gateway timeout")
        again = await queue.get(notification_id)
        assert again.status == NotificationStatus.FAILED
        assert again.retry_count == 3
        assert not await queue.claim(notification_id)

    async def test_non_retryable_failure(self, queue, clock):
        notification_id = await _enqueue(queue)

        await _fail_attempt(queue, clock, notification_id, reason="Invalid number", retryable=False)

        item = await queue.get(notification_id)
        assert item.status == NotificationStatus.FAILED
        assert item.retry_count == 0

    async def test_failure_for_pending_item_is_ignored(self, queue):
        notification_id = await _enqueue(queue)
        assert not await queue.mark_failed(notification_id, "late report")
        assert (await queue.get(notification_id)).retry_count == 0

    async def test_failure_for_unknown_item(self, queue):
        assert not await queue.mark_failed("missing", "boom")

    async def test_undelivered_sent_item_is_retried(self, queue):
        notification_id = await _sent(queue)

        item = await queue.mark_undelivered(notification_id, "Provider reported undelivered")

        assert item.status == NotificationStatus.PENDING
        assert item.retry_count == 1
        assert (await queue.get(notification_id)).metadata["delivery_confirmed"] is False

    async def test_confirm_delivery(self, queue):
        notification_id = await _sent(queue)

        assert await queue.confirm_delivery(notification_id)
        assert (await queue.get(notification_id)).metadata["delivery_confirmed"] is True

    async def test_confirm_delivery_needs_sent_item(self, queue):
        assert not await queue.confirm_delivery(await _enqueue(queue))

    async def test_confirm_delivery_applies_once(self, queue):
        notification_id = await _sent(queue)

        assert await queue.confirm_delivery(notification_id)
        assert not await queue.confirm_delivery(notification_id)


# ---------------------------------------------------------------------------
# Stale claims
# ---------------------------------------------------------------------------
class TestListStale:
    async def test_claim_older_than_threshold_is_stale(self, queue, clock):
        notification_id = await _enqueue(queue)
        await queue.claim(notification_id)

        clock.advance(seconds=29)
        assert await queue.list_stale(timedelta(seconds=30)) == []

        clock.advance(seconds=2)
        assert [i.id for i in await queue.list_stale(timedelta(seconds=30))] == [notification_id]


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------
class TestCancel:
    async def test_cancel_pending_and_processing(self, queue):
        pending = await _enqueue(queue)
        processing = await _enqueue(queue)
        await queue.claim(processing)

        assert await queue.cancel(pending, reason="Rider cancelled")
        assert await queue.cancel(processing)

        item = await queue.get(pending)
        assert item.status == NotificationStatus.CANCELLED
        assert item.last_error == "Rider cancelled"

    async def test_cannot_cancel_sent(self, queue):
        notification_id = await _sent(queue)
        assert not await queue.cancel(notification_id)
        assert (await queue.get(notification_id)).status == NotificationStatus.SENT

    async def test_cancelled_item_ignores_late_results(self, queue):
        notification_id = await _enqueue(queue)
        await queue.claim(notification_id)
        await queue.cancel(notification_id)

        assert not await queue.mark_sent(notification_id, "SM-1")
        assert not await queue.mark_failed(notification_id, "timeout")
        assert (await queue.get(notification_id)).status == NotificationStatus.CANCELLED

    async def test_cancel_by_correlation_only_touches_live_items(self, queue):
        pending = await _enqueue(queue)
        processing = await _enqueue(queue)
        await queue.claim(processing)
        sent = await _sent(queue)
        other_ride = await _enqueue(queue, metadata={"correlation_id": "ride-2"})

        assert await queue.cancel_by_correlation("ride-1", reason="Ride cancelled") == 2

        statuses = {i.id: i.status for i in await queue.history("ride-1")}
        assert statuses[pending] == statuses[processing] == NotificationStatus.CANCELLED
        assert statuses[sent] == NotificationStatus.SENT
        assert (await queue.get(other_ride)).status == NotificationStatus.PENDING


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
class TestReads:
    async def test_stats_count_every_status(self, queue):
        await _enqueue(queue)
        await _sent(queue)
        cancelled = await _enqueue(queue)
        await queue.cancel(cancelled)

        stats = await queue.stats()

        assert stats == {"pending": 1, "processing": 0, "sent": 1, "failed": 0, "cancelled": 1, "total": 3}

    async def test_history_is_oldest_first(self, queue, clock):
        first = await _enqueue(queue)
        clock.advance(seconds=5)
        second = await _enqueue(queue)

        assert [i.id for i in await queue.history("ride-1")] == [first, second]
        assert await queue.history("ride-9") == []

    async def test_exists_for(self, queue):
        notification_id = await _enqueue(
            queue, metadata={"correlation_id": "ride-1", "notification_type": "PickupReminder"}
        )

        assert await queue.exists_for("ride-1", "PickupReminder")
        assert not await queue.exists_for("ride-1", "DelayNotice")

        await queue.cancel(notification_id)
        assert not await queue.exists_for("ride-1", "PickupReminder")


# ---------------------------------------------------------------------------
# Invariants under random operation sequences
# ---------------------------------------------------------------------------
class TestRandomSequences:
    @pytest.mark.parametrize("seed", [1, 7, 42])
    async def test_invariants_hold(self, queue, clock, seed):
        rng = random.Random(seed)
        ids = [await _enqueue(queue, max_retries=rng.randint(0, 3)) for _ in range(4)]
        terminal_seen: dict[str, NotificationStatus] = {}

        for _ in range(60):
            notification_id = rng.choice(ids)
            operation = rng.choice(["claim", "sent", "fail", "fail_terminal", "cancel", "tick"])
            if operation == "claim":
                await queue.claim(notification_id)
            elif operation == "sent":
                await queue.mark_sent(notification_id, f"SM-{rng.random()}")
            elif operation == "fail":
                await queue.mark_failed(notification_id, "timeout")
            elif operation == "fail_terminal":
                await queue.mark_failed(notification_id, "invalid", retryable=False)
            elif operation == "cancel":
                await queue.cancel(notification_id)
            else:
                clock.advance(seconds=rng.choice([1, 5, 60]))

            eligible = {i.id for i in await queue.list_eligible(10)}
            for item in [await queue.get(i) for i in ids]:
                assert 0 <= item.retry_count <= item.max_retries
                if item.id in terminal_seen:
                    assert item.status == terminal_seen[item.id]
                if item.is_terminal:
                    terminal_seen[item.id] = item.status
                    assert item.id not in eligible
                if item.id in eligible:
                    assert item.status == NotificationStatus.PENDING
                    assert item.scheduled_time is None or item.scheduled_time <= clock.now
