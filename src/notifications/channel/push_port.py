"""Push channel port — abstract interface for push notifications."""

from abc import ABC, abstractmethod


class PushPort(ABC):
    @abstractmethod
    async def send(self, device_token: str, title: str, body: str) -> dict:
        """Send a push notification. Returns the same result shape as ``SMSPort.send``."""
        ...
