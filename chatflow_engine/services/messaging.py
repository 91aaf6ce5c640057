"""
Outbound message delivery.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from chatflow_engine.services.base import MessagingError

logger = logging.getLogger(__name__)


class WebhookChatSender:
    """ChatSender that forwards each message as JSON to a webhook."""

    def __init__(
        self,
        webhook_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.webhook_url = webhook_url
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(headers=headers, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send(self, channel: str, to: str, body: str, **options: Any) -> Any:
        message = {
            "channel": channel,
            "to": to,
            "body": body,
            "options": options,
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            response = await self._client.post(self.webhook_url, json=message)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise MessagingError(f"Delivery to {channel}:{to} failed: {e}", details=str(e)) from e
        return {"delivered": True, "status_code": response.status_code}


class LoggingChatSender:
    """ChatSender that only logs; used when no delivery channel is configured."""

    async def send(self, channel: str, to: str, body: str, **options: Any) -> Any:
        logger.info(f"Message to {channel}:{to}: {body}")
        return {"delivered": False, "simulated": True}
