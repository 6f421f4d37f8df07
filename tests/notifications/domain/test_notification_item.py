"""Tests for NotificationItem — creation, state machine, retry bookkeeping."""

from datetime import UTC, datetime, timedelta

import pytest

from notifications.notification.notification import (
    NotificationChannel,
    NotificationItem,
    NotificationPriority,
    NotificationStatus,
    RetryPolicy,
    can_transition,
    transition_sources,
)
from shared.errors import ValidationError

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _make_item(**overrides):
    defaults = {
        "channel": NotificationChannel.SMS,
        "recipient": "+15550100",
        "message_body": "Your driver is on the way.",
        "metadata": {"correlation_id": "ride-1"},
        "now": NOW,
    }
    defaults.update(overrides)
    return NotificationItem.create(**defaults)


def _processing(**overrides):
    return _make_item(**overrides).model_copy(update={"status": NotificationStatus.PROCESSING})


def _sent(**overrides):
    item = _make_item(**overrides)
    item.metadata["provider_message_ref"] = "SM1"
    return item.model_copy(update={"status": NotificationStatus.SENT})


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------
class TestCreate:
    def test_new_item_is_pending(self):
        item = _make_item()
        assert item.status == NotificationStatus.PENDING
        assert item.retry_count == 0
        assert item.max_retries == 3
        assert item.priority == NotificationPriority.MEDIUM
        assert item.retry_history == []
        assert item.correlation_id == "ride-1"
        assert item.created_at == item.updated_at == NOW

    def test_accepts_raw_enum_values(self):
        item = _make_item(channel="email", priority="urgent")
        assert item.channel == NotificationChannel.EMAIL
        assert item.priority == NotificationPriority.URGENT

    def test_ids_are_unique(self):
        assert _make_item().id != _make_item().id

    def test_negative_max_retries_rejected(self):
        with pytest.raises(ValidationError) as exc:
            _make_item(max_retries=-1)
        assert "max_retries" in exc.value.messages

    def test_empty_body_rejected(self):
        with pytest.raises(ValidationError):
            _make_item(message_body="")


# ---------------------------------------------------------------------------
# Priorities
# ---------------------------------------------------------------------------
class TestPriority:
    def test_priority_rank_order(self):
        ranks = [p.rank for p in (NotificationPriority.LOW, NotificationPriority.MEDIUM,
                                  NotificationPriority.HIGH, NotificationPriority.URGENT)]
        assert ranks == sorted(ranks)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------
class TestTransitions:
    def test_only_pending_items_can_be_claimed(self):
        assert transition_sources(NotificationStatus.PROCESSING) == (NotificationStatus.PENDING,)

    def test_only_processing_items_can_be_sent(self):
        assert transition_sources(NotificationStatus.SENT) == (NotificationStatus.PROCESSING,)

    def test_pending_and_processing_items_can_be_cancelled(self):
        assert transition_sources(NotificationStatus.CANCELLED) == (
            NotificationStatus.PENDING,
            NotificationStatus.PROCESSING,
        )

    def test_failure_is_reported_only_for_processing_items(self):
        with pytest.raises(ValidationError, match="Cannot transition from pending to failed"):
            _make_item().mark_failed("timeout", RetryPolicy(), NOW)

    @pytest.mark.parametrize("target", list(NotificationStatus))
    def test_terminal_statuses_have_no_exits(self, target):
        assert not can_transition(NotificationStatus.SENT, target)
        assert not can_transition(NotificationStatus.CANCELLED, target)

    def test_failed_only_leads_back_to_pending(self):
        allowed = {s for s in NotificationStatus if can_transition(NotificationStatus.FAILED, s)}
        assert allowed == {NotificationStatus.PENDING}


# ---------------------------------------------------------------------------
# Failures and retries
# ---------------------------------------------------------------------------
class TestRetryPolicy:
    def test_backoff_table(self):
        policy = RetryPolicy()
        assert [policy.delay_for(n).total_seconds() for n in range(4)] == [1, 5, 15, 60]

    def test_cap_applies_past_the_table(self):
        assert RetryPolicy().delay_for(10) == timedelta(seconds=300)

    def test_cap_clamps_table_entries(self):
        assert RetryPolicy(backoff=(1, 500), cap=120).delay_for(1) == timedelta(seconds=120)


class TestMarkFailed:
    def test_retryable_failure_requeues_with_backoff(self):
        item = _processing()
        outcome = item.mark_failed("timeout", RetryPolicy(), NOW)

        assert outcome.retried
        assert item.status == NotificationStatus.PENDING
        assert item.retry_count == 1
        assert item.scheduled_time == NOW + timedelta(seconds=1)
        assert item.last_error == "timeout"

    def test_history_entry_records_the_attempt(self):
        item = _processing()
        item.mark_failed("timeout", RetryPolicy(), NOW)

        entry = item.retry_history[0]
        assert entry["attempt"] == 1
        assert entry["reason"] == "timeout"
        assert entry["source"] == "send"
        assert entry["retry_count"] == 1
        assert entry["next_attempt_at"] == (NOW + timedelta(seconds=1)).isoformat()

    def test_exhausting_retries_ends_failed(self):
        item = _processing(max_retries=3)
        policy = RetryPolicy()
        now = NOW
        for _ in range(2):
            assert item.mark_failed("timeout", policy, now).retried
            now = item.scheduled_time
            item.status = NotificationStatus.PROCESSING

        outcome = item.mark_failed("timeout", policy, now)

        assert not outcome.retried
        assert item.status == NotificationStatus.FAILED
        assert item.retry_count == 3
        assert item.is_terminal
        assert [e["retry_count"] for e in item.retry_history] == [1, 2, 3]

    def test_backoff_grows_with_each_retry(self):
        item = _processing(max_retries=5)
        policy = RetryPolicy()
        now = NOW
        waits = []
        for _ in range(4):
            item.mark_failed("timeout", policy, now)
            waits.append((item.scheduled_time - now).total_seconds())
            now = item.scheduled_time
            item.status = NotificationStatus.PROCESSING
        assert waits == [1, 5, 15, 60]

    def test_non_retryable_failure_is_terminal_without_consuming_a_retry(self):
        item = _processing()
        outcome = item.mark_failed("invalid number", RetryPolicy(), NOW, retryable=False)

        assert not outcome.retried
        assert item.status == NotificationStatus.FAILED
        assert item.retry_count == 0
        assert item.retry_history[0]["retryable"] is False

    def test_zero_max_retries_fails_immediately(self):
        item = _processing(max_retries=0)
        item.mark_failed("timeout", RetryPolicy(), NOW)
        assert item.status == NotificationStatus.FAILED
        assert item.retry_count == 0

    def test_failed_item_cannot_fail_again(self):
        item = _processing(max_retries=0)
        item.mark_failed("timeout", RetryPolicy(), NOW)
        with pytest.raises(ValidationError):
            item.mark_failed("again", RetryPolicy(), NOW)


class TestMarkUndelivered:
    def test_only_sent_items(self):
        with pytest.raises(ValidationError):
            _processing().mark_undelivered("30003", RetryPolicy(), NOW)

    def test_retryable_receipt_requeues_sent_item(self):
        item = _sent()
        outcome = item.mark_undelivered("Provider reported failed", RetryPolicy(), NOW)

        assert outcome.retried
        assert item.status == NotificationStatus.PENDING
        assert item.retry_history[0]["source"] == "receipt"
        assert item.metadata["delivery_confirmed"] is False

    def test_non_retryable_receipt_fails_with_budget_left(self):
        item = _sent()
        item.mark_undelivered("Provider reported failed", RetryPolicy(), NOW, retryable=False)

        assert item.status == NotificationStatus.FAILED
        assert item.retry_count == 0
        assert item.max_retries == 3
