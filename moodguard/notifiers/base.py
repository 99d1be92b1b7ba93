"""
Base delivery sink classes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from moodguard.config import DeliveryConfig
from moodguard.database.models import SmartNotification


@dataclass
class DeliveryResult:
    """Result of a delivery attempt."""

    accepted: bool
    channel: str
    reason: Optional[str] = None


class DeliverySink(ABC):
    """Abstract base class for delivery sinks."""

    channel = "sink"

    @abstractmethod
    def deliver(self, notification: SmartNotification) -> DeliveryResult:
        """
        Hand a single notification to the platform.

        Sinks must treat the notification id as an idempotency key: the same
        notification may be delivered more than once after a failed attempt.

        Args:
            notification: Finalized notification

        Returns:
            DeliveryResult indicating acceptance or rejection
        """
        pass


class SinkFactory:
    """Factory for creating delivery sinks."""

    @staticmethod
    def create(config: DeliveryConfig) -> DeliverySink:
        """
        Create a sink from configuration.

        Args:
            config: Delivery configuration

        Returns:
            Appropriate DeliverySink instance

        Raises:
            ValueError: If sink type is unknown
        """
        if config.type == "webhook":
            from .webhook import WebhookSink

            return WebhookSink(
                webhook_url=config.webhook_url or "",
                timeout=config.timeout_seconds,
            )

        elif config.type == "log":
            from .log import LogSink

            return LogSink()

        else:
            raise ValueError(f"Unknown delivery type: {config.type}")
