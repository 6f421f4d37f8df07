"""Recipient preferences — contact addresses, channel toggles, ride-update opt-outs.

Riders and drivers share one model. Preferences live with the dispatch
application; ridestream reads them through ``PreferenceStore``.
"""

from abc import ABC, abstractmethod
from enum import Enum

from pydantic import BaseModel, Field

from notifications.notification.notification import NotificationChannel


class RideUpdate(Enum):
    REQUEST_CONFIRMATION = "request_confirmation"
    DRIVER_ASSIGNED = "driver_assigned"
    PICKUP_REMINDER = "pickup_reminder"
    RIDE_START = "ride_start"
    RIDE_COMPLETE = "ride_complete"
    DELAYS = "delays"
    ROUNDTRIP_UPDATES = "roundtrip_updates"
    CANCELLATIONS = "cancellations"


class ContactPriority(Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    TERTIARY = "tertiary"


class EmergencyContact(BaseModel):
    name: str
    phone_number: str
    relationship: str
    priority: ContactPriority = ContactPriority.SECONDARY


class RecipientPreferences(BaseModel):
    recipient_id: str
    phone_number: str | None = None
    email: str | None = None
    device_token: str | None = None

    # Channel preferences
    sms_enabled: bool = True
    email_enabled: bool = False
    push_enabled: bool = False

    # Ride update opt-outs; updates not listed are wanted
    opted_out: set[RideUpdate] = Field(default_factory=set)

    emergency_contacts: list[EmergencyContact] = Field(default_factory=list)

    def wants(self, update: RideUpdate | None) -> bool:
        return update is None or update not in self.opted_out

    def enabled_channels(self) -> list[str]:
        enabled = []
        if self.sms_enabled and self.phone_number:
            enabled.append(NotificationChannel.SMS.value)
        if self.email_enabled and self.email:
            enabled.append(NotificationChannel.EMAIL.value)
        if self.push_enabled and self.device_token:
            enabled.append(NotificationChannel.PUSH.value)
        return enabled

    def address_for(self, channel: str) -> str | None:
        return {
            NotificationChannel.SMS.value: self.phone_number,
            NotificationChannel.EMAIL.value: self.email,
            NotificationChannel.PUSH.value: self.device_token,
        }.get(channel)

    def primary_emergency_contact(self) -> EmergencyContact | None:
        for contact in self.emergency_contacts:
            if contact.priority == ContactPriority.PRIMARY:
                return contact
        return None


class PreferenceStore(ABC):
    @abstractmethod
    async def get(self, recipient_id: str) -> RecipientPreferences | None: ...


class InMemoryPreferenceStore(PreferenceStore):
    def __init__(self, preferences: list[RecipientPreferences] | None = None):
        self._preferences = {p.recipient_id: p for p in preferences or []}

    async def get(self, recipient_id: str) -> RecipientPreferences | None:
        return self._preferences.get(str(recipient_id))

    def save(self, preferences: RecipientPreferences) -> None:
        self._preferences[preferences.recipient_id] = preferences

    def reset(self) -> None:
        self._preferences.clear()
