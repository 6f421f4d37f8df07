"""Fake email adapter — records sent emails for testing."""

from notifications.channel.email_port import EmailPort
from notifications.channel.fake import FakeChannelBehavior


class FakeEmailAdapter(FakeChannelBehavior, EmailPort):
    prefix = "email"
    default_failure_reason = "Email delivery failed"

    @property
    def sent_emails(self) -> list[dict]:
        return self.deliveries

    async def send(self, to: str, subject: str, body: str) -> dict:
        return await self._deliver({"to": to, "subject": subject, "body": body})
