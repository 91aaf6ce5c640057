"""
Service bag handed to executors.

Built once per session and shared by every ExecutionContext of that session.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from chatflow_engine.config import get_settings
from chatflow_engine.config.settings import Settings
from chatflow_engine.services.base import ChatSender, HttpClient, KeyValueStore, LlmClient
from chatflow_engine.services.http import HttpxClient
from chatflow_engine.services.llm import OpenAICompatibleClient
from chatflow_engine.services.messaging import LoggingChatSender, WebhookChatSender
from chatflow_engine.services.storage import create_store


@dataclass
class Services:
    """Explicit capabilities available to executors. Only the logger is mandatory."""

    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("chatflow_engine.executors"))
    http: Optional[HttpClient] = None
    storage: Optional[KeyValueStore] = None
    llm: Optional[LlmClient] = None
    sender: Optional[ChatSender] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Services":
        """Construct the configured implementations."""
        settings = settings or get_settings()

        llm = None
        if settings.llm.base_url:
            llm = OpenAICompatibleClient(
                base_url=settings.llm.base_url,
                api_key=settings.llm.api_key,
                default_model=settings.llm.model,
                timeout=settings.llm.timeout,
            )

        if settings.messaging.webhook_url:
            sender = WebhookChatSender(
                settings.messaging.webhook_url,
                token=settings.messaging.webhook_token,
                timeout=settings.executor.http_timeout,
            )
        else:
            sender = LoggingChatSender()

        return cls(
            http=HttpxClient(timeout=settings.executor.http_timeout),
            storage=create_store(settings),
            llm=llm,
            sender=sender,
        )

    async def aclose(self) -> None:
        """Release network resources held by the implementations."""
        for service in (self.http, self.llm, self.sender):
            close = getattr(service, "aclose", None)
            if close is not None:
                await close()
        client = getattr(self.storage, "client", None)
        if client is not None:
            await client.aclose()
