"""
Webhook notifier for TimeCapsule.

Posts each lifecycle event as JSON to a configured URL so an external
service (e.g. the email sender) can act on it.

Delivery is fire-and-forget:
    - Requests use a bounded timeout
    - Transport errors and non-2xx answers are logged, never raised
    - The core never retries; the receiver must tolerate gaps
"""

import logging

import httpx

from timecapsule.schema import NotificationEvent

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """
    Deliver events with an HTTP POST.

    Usage:
        notifier = WebhookNotifier("https://hooks.example.com/timecapsule")
        notifier.notify(event)
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        """
        Initialize the notifier.

        Args:
            url: Endpoint receiving the events
            timeout_seconds: Timeout for one delivery
            client: Optional preconfigured client (e.g. with a mock transport)
        """
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def notify(self, event: NotificationEvent) -> None:
        try:
            response = self._client.post(
                self.url,
                content=event.model_dump_json(),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.warning("Webhook delivery of %s failed: %s", event.kind.value, e)
            return

        if response.status_code >= 400:
            logger.warning(
                "Webhook rejected %s with HTTP %d",
                event.kind.value,
                response.status_code,
            )

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()
