"""
Notifier: outbound user notifications (purchase confirmation, welcome).
Delivery itself belongs to an external mail service; this module only defines the seam.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)


class Notifier(ABC):
    @abstractmethod
    def send(self, template: str, recipient: str, data: dict[str, Any]) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Records the notification as a structured log event for the mail relay to pick up."""

    def send(self, template: str, recipient: str, data: dict[str, Any]) -> None:
        logger.info(
            "notification_queued",
            extra={"template": template, "recipient": recipient, "user_id": data.get("user_id")},
        )


def notify_safely(notifier: Notifier | None, template: str, recipient: str | None, data: dict[str, Any]) -> None:
    """Send, but never let a delivery problem undo the caller's work."""
    if notifier is None or not recipient:
        return
    try:
        notifier.send(template, recipient, data)
    except Exception as e:
        logger.warning("notification_failed", extra={"template": template, "error": str(e)})
