"""Shared behavior of the in-memory channel adapters."""

import asyncio
from uuid import uuid4


class FakeChannelBehavior:
    """Records deliveries and fails on demand.

    ``configure(should_succeed=False, retryable=False)`` simulates a
    terminal rejection (invalid recipient, policy block); with
    ``retryable=True`` a transient provider error. ``raise_error`` makes
    the adapter raise instead of returning a failed result. ``latency``
    delays every send.
    """

    prefix = "msg"
    default_failure_reason = "Delivery failed"

    def __init__(self):
        self.reset()

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str | None = None,
        retryable: bool = True,
        raise_error: Exception | None = None,
        latency: float = 0.0,
    ):
        """Configure the fake adapter behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason or self.default_failure_reason
        self.retryable = retryable
        self.raise_error = raise_error
        self.latency = latency

    def reset(self):
        """Clear recorded deliveries and restore default behavior."""
        self.deliveries: list[dict] = []
        self.attempts = 0
        self.configure()

    async def _deliver(self, record: dict) -> dict:
        self.attempts += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        if self.raise_error is not None:
            raise self.raise_error
        if not self.should_succeed:
            return {
                "message_id": None,
                "status": "failed",
                "error": self.failure_reason,
                "retryable": self.retryable,
            }

        message_id = f"{self.prefix}-{uuid4().hex[:12]}"
        self.deliveries.append({"message_id": message_id, **record})
        return {"message_id": message_id, "status": "sent"}
