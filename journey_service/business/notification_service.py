"""Outbound user notifications."""
from typing import Protocol

from prometheus_client import Counter

from journey_service.logging_config import get_logger

logger = get_logger(__name__)

notifications_total = Counter(
    "journey_notifications_total",
    "Total notifications dispatched on journey transitions",
    ["channel", "status"],
)


class NotificationDispatcher(Protocol):
    """Anything that can deliver a short message to a user."""

    def send(self, user_id: str, message: str) -> bool:
        ...


class SmsService:
    """
    SMS dispatcher.

    No provider is wired in; messages are logged and reported as sent.
    """

    channel = "sms"

    def send(self, user_id: str, message: str) -> bool:
        logger.info("Sending SMS", user_id=user_id, message=message)
        notifications_total.labels(channel=self.channel, status="sent").inc()
        return True


class NullNotificationDispatcher:
    """Dispatcher used when notifications are disabled."""

    channel = "null"

    def send(self, user_id: str, message: str) -> bool:
        logger.debug("Notification suppressed", user_id=user_id)
        notifications_total.labels(channel=self.channel, status="suppressed").inc()
        return False
