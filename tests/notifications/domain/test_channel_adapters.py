"""Tests for the fake channel adapters, the registry and ChannelSender."""

import pytest

from notifications.channel import get_channel, register_channel, reset_channels
from notifications.channel.fake_email import FakeEmailAdapter
from notifications.channel.fake_push import FakePushAdapter
from notifications.channel.fake_sms import FakeSMSAdapter
from notifications.channel.sender import ChannelSender
from notifications.notification.notification import NotificationItem
from shared.errors import TransientSendFailure


def _make_item(channel="sms", recipient="+15550100", **metadata):
    return NotificationItem.create(
        channel=channel,
        recipient=recipient,
        message_body="Your ride is complete.",
        metadata=metadata,
    )


class TestFakeAdapters:
    async def test_sms_records_message(self):
        adapter = FakeSMSAdapter()
        result = await adapter.send(to="+15550100", body="hello")

        assert result["status"] == "sent"
        assert result["message_id"].startswith("SM-")
        assert adapter.sent_messages[0]["to"] == "+15550100"
        assert adapter.attempts == 1

    async def test_configured_failure(self):
        adapter = FakeEmailAdapter()
        adapter.configure(should_succeed=False, failure_reason="Mailbox full", retryable=False)

        result = await adapter.send(to="r@example.com", subject="s", body="b")

        assert result == {"message_id": None, "status": "failed", "error": "Mailbox full", "retryable": False}
        assert adapter.sent_emails == []

    async def test_configured_exception(self):
        adapter = FakePushAdapter()
        adapter.configure(raise_error=ConnectionError("gateway down"))

        with pytest.raises(ConnectionError):
            await adapter.send(device_token="tok", title="t", body="b")
        assert adapter.attempts == 1

    async def test_reset_restores_success(self):
        adapter = FakeSMSAdapter()
        adapter.configure(should_succeed=False)
        adapter.reset()

        assert (await adapter.send(to="+1", body="b"))["status"] == "sent"


class TestRegistry:
    def test_singleton_per_channel(self):
        assert get_channel("sms") is get_channel("sms")
        assert isinstance(get_channel("email"), FakeEmailAdapter)

    def test_reset_creates_fresh_adapters(self):
        first = get_channel("sms")
        reset_channels()
        assert get_channel("sms") is not first

    def test_register_replaces_default(self):
        custom = FakeSMSAdapter()
        register_channel("sms", custom)
        assert get_channel("sms") is custom

    def test_unknown_channel(self):
        with pytest.raises(ValueError):
            get_channel("pigeon")


class TestChannelSender:
    async def test_sms_route(self):
        result = await ChannelSender().send(_make_item())
        assert result["status"] == "sent"
        assert get_channel("sms").sent_messages[0]["body"] == "Your ride is complete."

    async def test_email_uses_subject(self):
        await ChannelSender().send(_make_item("email", "r@example.com", subject="Ride Update"))
        assert get_channel("email").sent_emails[0]["subject"] == "Ride Update"

    async def test_push_uses_device_token(self):
        await ChannelSender().send(_make_item("push", "device-1", subject="Ride Update"))
        sent = get_channel("push").sent_pushes[0]
        assert sent["device_token"] == "device-1"
        assert sent["title"] == "Ride Update"

    async def test_injected_channel_lookup(self):
        adapter = FakeSMSAdapter()
        sender = ChannelSender(channels=lambda channel: adapter)
        await sender.send(_make_item())
        assert len(adapter.sent_messages) == 1

    async def test_connection_error_becomes_transient_failure(self):
        get_channel("sms").configure(raise_error=ConnectionError("gateway down"))

        with pytest.raises(TransientSendFailure, match="gateway down"):
            await ChannelSender().send(_make_item())

    async def test_other_adapter_errors_propagate(self):
        get_channel("sms").configure(raise_error=KeyError("to"))

        with pytest.raises(KeyError):
            await ChannelSender().send(_make_item())
