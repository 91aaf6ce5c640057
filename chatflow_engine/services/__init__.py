"""Service interfaces and implementations used by executors."""

from chatflow_engine.services.base import (
    ChatSender,
    HttpClient,
    HttpServiceError,
    KeyValueStore,
    LlmClient,
    LlmServiceError,
    MessagingError,
    ServiceError,
    StorageError,
)
from chatflow_engine.services.container import Services
from chatflow_engine.services.http import HttpxClient
from chatflow_engine.services.llm import OpenAICompatibleClient
from chatflow_engine.services.messaging import LoggingChatSender, WebhookChatSender
from chatflow_engine.services.storage import InMemoryStore, RedisStore, create_store

__all__ = [
    "ChatSender",
    "HttpClient",
    "HttpServiceError",
    "KeyValueStore",
    "LlmClient",
    "LlmServiceError",
    "MessagingError",
    "ServiceError",
    "StorageError",
    "Services",
    "HttpxClient",
    "OpenAICompatibleClient",
    "LoggingChatSender",
    "WebhookChatSender",
    "InMemoryStore",
    "RedisStore",
    "create_store",
]
