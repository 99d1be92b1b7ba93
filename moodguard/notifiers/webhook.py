"""
JSON webhook sink for a push gateway.
"""

import time
from typing import Any

import requests

from moodguard.database.models import Priority, SmartNotification
from .base import DeliveryResult, DeliverySink


class WebhookSink(DeliverySink):
    """Posts notifications to a push gateway webhook."""

    channel = "webhook"

    # Gateway urgency levels
    URGENCY = {
        Priority.LOW: "low",
        Priority.NORMAL: "normal",
        Priority.HIGH: "high",
        Priority.CRITICAL: "urgent",
    }

    def __init__(self, webhook_url: str, timeout: float = 10.0):
        """
        Initialize webhook sink.

        Args:
            webhook_url: Gateway endpoint accepting notification JSON
            timeout: Seconds to wait for the gateway before giving up
        """
        self.webhook_url = webhook_url
        self.timeout = timeout

    def deliver(self, notification: SmartNotification) -> DeliveryResult:
        """Post notification to the gateway."""
        try:
            payload = self._create_payload(notification)
            response = self._post(payload, notification.id)

            if response.ok:
                return DeliveryResult(accepted=True, channel=self.channel)
            else:
                return DeliveryResult(
                    accepted=False,
                    channel=self.channel,
                    reason=f"HTTP {response.status_code}: {response.text}",
                )

        except requests.exceptions.Timeout as e:
            return DeliveryResult(
                accepted=False,
                channel=self.channel,
                reason=f"Timeout: {str(e)}",
            )
        except requests.exceptions.ConnectionError as e:
            return DeliveryResult(
                accepted=False,
                channel=self.channel,
                reason=f"Connection error: {str(e)}",
            )
        except requests.exceptions.RequestException as e:
            return DeliveryResult(
                accepted=False,
                channel=self.channel,
                reason=str(e),
            )

    def _post(self, payload: dict[str, Any], notification_id: str) -> requests.Response:
        """Post with rate limit handling."""
        headers = {"Idempotency-Key": notification_id}
        response = requests.post(
            self.webhook_url,
            json=payload,
            headers=headers,
            timeout=self.timeout,
        )

        # Handle rate limiting
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "1")
            time.sleep(min(float(retry_after), self.timeout))
            response = requests.post(
                self.webhook_url,
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )

        return response

    def _create_payload(self, notification: SmartNotification) -> dict[str, Any]:
        """Create gateway payload."""
        payload: dict[str, Any] = {
            "id": notification.id,
            "type": notification.type.value,
            "title": notification.title,
            "body": notification.body,
            "priority": notification.priority.value,
            "urgency": self.URGENCY[notification.priority],
            "fire_at": notification.fire_time.isoformat(),
            "data": {
                key: value
                for key, value in notification.payload.items()
                if key in ("mood_trend", "risk_level", "suggested_actions", "action_text")
            },
        }

        if notification.priority == Priority.CRITICAL:
            payload["interruption_level"] = "time-sensitive"

        return payload
