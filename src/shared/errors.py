"""Error taxonomy shared by every ridestream context.

Storage-level races (a lost claim, a receipt for a row that moved on) are
not errors: queue operations report them by returning False.
"""


class RidestreamError(Exception):
    """Base class for all ridestream errors."""


class ValidationError(RidestreamError):
    """Invalid value or illegal state transition."""

    def __init__(self, messages: dict[str, list[str]]):
        self.messages = messages
        super().__init__(messages)


class NotificationNotFound(RidestreamError):
    def __init__(self, notification_id: str):
        self.notification_id = notification_id
        super().__init__(f"Notification {notification_id} not found")


class TransientSendFailure(RidestreamError):
    """Network or provider-side failure. The item is requeued with backoff."""


class TerminalSendFailure(RidestreamError):
    """Invalid recipient or policy block. The item fails without retry."""


class StreamDisruption(RidestreamError):
    """A change-feed subscription broke."""

    def __init__(self, subscription: str, cause: BaseException | None = None):
        self.subscription = subscription
        self.cause = cause
        super().__init__(f"Change feed subscription {subscription!r} disrupted: {cause}")
