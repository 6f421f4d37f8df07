"""Fake push adapter — records push notifications for testing."""

from notifications.channel.fake import FakeChannelBehavior
from notifications.channel.push_port import PushPort


class FakePushAdapter(FakeChannelBehavior, PushPort):
    prefix = "push"
    default_failure_reason = "Push delivery failed"

    @property
    def sent_pushes(self) -> list[dict]:
        return self.deliveries

    async def send(self, device_token: str, title: str, body: str) -> dict:
        return await self._deliver({"device_token": device_token, "title": title, "body": body})
