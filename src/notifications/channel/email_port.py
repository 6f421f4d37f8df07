"""Email channel port — abstract interface for email dispatch."""

from abc import ABC, abstractmethod


class EmailPort(ABC):
    @abstractmethod
    async def send(self, to: str, subject: str, body: str) -> dict:
        """Send an email. Returns the same result shape as ``SMSPort.send``."""
        ...
