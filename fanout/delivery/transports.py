"""Delivery transports: HTTPS webhook via httpx, and a logging transport for dry runs."""

import logging
from collections import deque
from typing import Any

import httpx

from fanout.delivery.models import DeliveryResult, PermanentFailure, Success, TransientFailure
from fanout.events.models import Event, event_to_dict

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

# Deliveries remembered by LoggingTransport
DRY_RUN_HISTORY = 1000

# Retryable HTTP statuses besides 5xx
_TRANSIENT_STATUSES = frozenset({408, 425, 429})


def classify_status(status_code: int) -> DeliveryResult:
    """Map an HTTP status to a delivery result."""
    if 200 <= status_code < 300:
        return Success()
    if status_code in _TRANSIENT_STATUSES or status_code >= 500:
        return TransientFailure(reason=f"HTTP {status_code}")
    return PermanentFailure(reason=f"HTTP {status_code}")


class WebhookTransport:
    """POSTs the canonical event JSON to the endpoint URL.

    endpoint_descriptor is the URL string. One AsyncClient is shared for all sends; call aclose().
    The bearer token is sent with every request, including through an injected client.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._auth_headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(
            timeout=timeout, headers={"Content-Type": "application/json"}
        )

    async def send(self, endpoint_descriptor: Any, event: Event) -> DeliveryResult:
        url = str(endpoint_descriptor)
        if not url.startswith(("http://", "https://")):
            return PermanentFailure(reason=f"Invalid webhook URL: {url!r}")
        try:
            resp = await self._client.post(
                url,
                json=event_to_dict(event),
                headers={**self._auth_headers, "X-Fanout-Event-Id": event.event_id},
            )
        except httpx.TimeoutException:
            return TransientFailure(reason="Connection timeout")
        except httpx.TransportError as e:
            logger.debug("Webhook %s transport error: %s", url, e)
            return TransientFailure(reason=f"{type(e).__name__}: {e}")
        except httpx.InvalidURL as e:
            return PermanentFailure(reason=f"Invalid webhook URL: {e}")
        return classify_status(resp.status_code)

    async def aclose(self) -> None:
        await self._client.aclose()


class LoggingTransport:
    """Logs each delivery and reports success. Used by --dry-run.

    sent keeps the most recent (endpoint, event_id) pairs; sent_count counts all of them.
    """

    def __init__(self, history: int = DRY_RUN_HISTORY) -> None:
        self.sent: deque[tuple[Any, str]] = deque(maxlen=history)
        self.sent_count = 0

    async def send(self, endpoint_descriptor: Any, event: Event) -> DeliveryResult:
        self.sent.append((endpoint_descriptor, event.event_id))
        self.sent_count += 1
        logger.info(
            "[dry-run] %s %s/%s -> %s",
            event.event_name,
            event.resource_locator.container_identifier,
            event.resource_locator.object_key,
            endpoint_descriptor,
        )
        return Success()

    async def aclose(self) -> None:
        return None
