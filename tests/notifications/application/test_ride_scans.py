"""Tests for RideScans — pickup reminders and delay detection."""

from datetime import timedelta

import pytest

from notifications.notification.helpers import NotificationProducer
from notifications.notification.notification import NotificationPriority
from notifications.notification.ride_scans import RideScans
from notifications.preference.preference import InMemoryPreferenceStore, RecipientPreferences, RideUpdate
from rides.documents import InMemoryRideStore


@pytest.fixture
def rides():
    return InMemoryRideStore()


@pytest.fixture
def preferences():
    return InMemoryPreferenceStore()


@pytest.fixture
def scans(rides, queue, preferences):
    return RideScans(rides, NotificationProducer(queue, preferences))


def _add_ride(rides, pickup, ride_id="ride-1", status=100, **overrides):
    rides.insert(
        {
            "uuid": ride_id,
            "serviceUserUuid": "rider-1",
            "pickupAddress": "1 Main St",
            "pickupRequestedTime": pickup,
            "rideStatus": status,
            **overrides,
        }
    )


class TestPickupReminders:
    async def test_upcoming_pickup_gets_one_reminder(self, scans, rides, queue, clock):
        _add_ride(rides, clock.now + timedelta(minutes=10))

        ids = await scans.send_pickup_reminders()

        item = await queue.get(ids[0])
        assert len(ids) == 1
        assert item.metadata["notification_type"] == "PickupReminder"
        assert "09:10 UTC" in item.message_body
        assert "1 Main St" in item.message_body
        assert [eligible.id for eligible in await queue.list_eligible(10)] == ids

    async def test_repeat_scan_does_not_remind_twice(self, scans, rides, clock):
        _add_ride(rides, clock.now + timedelta(minutes=10))

        await scans.send_pickup_reminders()
        assert await scans.send_pickup_reminders() == []

    async def test_distant_and_past_pickups_are_skipped(self, scans, rides, clock):
        _add_ride(rides, clock.now + timedelta(hours=2), ride_id="later")
        _add_ride(rides, clock.now - timedelta(minutes=5), ride_id="past")

        assert await scans.send_pickup_reminders() == []

    async def test_only_confirmed_rides(self, scans, rides, clock):
        _add_ride(rides, clock.now + timedelta(minutes=10), status=200)
        assert await scans.send_pickup_reminders() == []

    async def test_opted_out_rider(self, scans, rides, preferences, clock):
        preferences.save(
            RecipientPreferences(
                recipient_id="rider-1", phone_number="+15550100", opted_out={RideUpdate.PICKUP_REMINDER}
            )
        )
        _add_ride(rides, clock.now + timedelta(minutes=10))

        assert await scans.send_pickup_reminders() == []


class TestDelayDetection:
    async def test_late_ride_gets_high_priority_notice(self, scans, rides, queue, clock):
        _add_ride(rides, clock.now - timedelta(minutes=20))

        ids = await scans.detect_delays()

        item = await queue.get(ids[0])
        assert item.priority == NotificationPriority.HIGH
        assert item.metadata["notification_type"] == "DelayNotice"
        assert "approximately 20 minutes late" in item.message_body

    async def test_notice_sent_once(self, scans, rides, clock):
        _add_ride(rides, clock.now - timedelta(minutes=20))

        await scans.detect_delays()
        clock.advance(minutes=5)
        assert await scans.detect_delays() == []

    async def test_within_threshold(self, scans, rides, clock):
        _add_ride(rides, clock.now - timedelta(minutes=10))
        assert await scans.detect_delays() == []

    async def test_started_ride_is_not_delayed(self, scans, rides, clock):
        _add_ride(rides, clock.now - timedelta(minutes=30), rideStartedActualTime=clock.now - timedelta(minutes=1))
        assert await scans.detect_delays() == []


class TestScheduling:
    async def test_scans_run_as_periodic_tasks(self, scans):
        assert [task.name for task in scans.tasks] == ["pickup-reminders", "delay-detection"]
        scans.start()
        try:
            assert all(task.running for task in scans.tasks)
        finally:
            await scans.stop()
        assert not any(task.running for task in scans.tasks)
