"""Fake SMS adapter — records sent messages for testing."""

from notifications.channel.fake import FakeChannelBehavior
from notifications.channel.sms_port import SMSPort


class FakeSMSAdapter(FakeChannelBehavior, SMSPort):
    """SMS adapter that records messages in memory for test assertions."""

    prefix = "SM"
    default_failure_reason = "SMS delivery failed"

    @property
    def sent_messages(self) -> list[dict]:
        return self.deliveries

    async def send(self, to: str, body: str) -> dict:
        return await self._deliver({"to": to, "body": body})
