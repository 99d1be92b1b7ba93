"""
Logging sink for local runs without a push gateway.
"""

import logging

from moodguard.database.models import SmartNotification
from .base import DeliveryResult, DeliverySink

logger = logging.getLogger(__name__)


class LogSink(DeliverySink):
    """Accepts every notification and writes it to the log."""

    channel = "log"

    def deliver(self, notification: SmartNotification) -> DeliveryResult:
        logger.info(
            f"[{notification.priority.value}] {notification.type.value} "
            f"at {notification.fire_time:%Y-%m-%d %H:%M}: "
            f"{notification.title} - {notification.body}"
        )
        return DeliveryResult(accepted=True, channel=self.channel)
