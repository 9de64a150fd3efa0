"""Webhook delivery of matched transactions."""

from __future__ import annotations

from typing import Optional

import httpx
import structlog
from pydantic import BaseModel

from chainwatch.chain.models import Transaction

logger = structlog.get_logger()

NOTIFICATION_MESSAGE = "New transaction detected"


class DeliveryError(Exception):
    """Raised when a notification could not be delivered."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotificationPayload(BaseModel):
    """Body posted to the webhook sink."""

    address: str
    transaction: Transaction
    notification: str = NOTIFICATION_MESSAGE


class WebhookNotifier:
    """
    Delivers one POST per matched transaction.

    Delivery is best effort: a single attempt, no retry. Anything but a
    2xx answer is reported as DeliveryError.
    """

    def __init__(
        self, timeout: float = 10.0, http_client: Optional[httpx.AsyncClient] = None
    ):
        self.timeout = timeout
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def notify(self, transaction: Transaction, address: str, sink_url: str) -> None:
        """
        Post ``transaction`` for ``address`` to ``sink_url``.

        Raises:
            DeliveryError: On transport failure or a non-2xx status
        """
        payload = NotificationPayload(address=address, transaction=transaction)

        try:
            response = await self._http.post(
                sink_url, json=payload.model_dump(mode="json", by_alias=True)
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise DeliveryError(f"Webhook request failed: {e}") from e

        if not response.is_success:
            raise DeliveryError(
                f"Webhook returned status {response.status_code}",
                status_code=response.status_code,
            )

        logger.info(
            "notify.sent",
            tx_hash=transaction.hash,
            address=address,
            status_code=response.status_code,
        )
