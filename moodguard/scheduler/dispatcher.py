"""
Hands finalized notifications to the delivery sink.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from moodguard.database.models import SmartNotification
from moodguard.notifiers.base import DeliveryResult, DeliverySink

logger = logging.getLogger(__name__)


@dataclass
class DispatchOutcome:
    """Sink response for one notification."""

    notification: SmartNotification
    accepted: bool
    reason: Optional[str] = None


class Dispatcher:
    """Delivers notifications one by one and reports what the sink said."""

    def __init__(self, sink: DeliverySink):
        self.sink = sink

    def dispatch(self, notifications: list[SmartNotification]) -> list[DispatchOutcome]:
        """
        Deliver notifications.

        A sink that raises is treated as a rejection so the notification is
        retried on the next pass.
        """
        outcomes = []

        for notification in notifications:
            try:
                result = self.sink.deliver(notification)
            except Exception as e:
                logger.warning(f"Sink raised while delivering {notification.id}: {e}")
                result = DeliveryResult(
                    accepted=False, channel=self.sink.channel, reason=str(e)
                )

            if not result.accepted:
                logger.warning(
                    f"Delivery of {notification.id} ({notification.type.value}) "
                    f"rejected by {result.channel}: {result.reason}"
                )
            outcomes.append(
                DispatchOutcome(
                    notification=notification,
                    accepted=result.accepted,
                    reason=result.reason,
                )
            )

        return outcomes
