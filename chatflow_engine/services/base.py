"""
Capability interfaces injected into executors.

Executors depend only on these protocols; concrete implementations live
beside this module and are constructed once per session.
"""

from typing import Any, Optional, Protocol, runtime_checkable


class ServiceError(Exception):
    """Base class for failures raised by service implementations."""

    code = "SERVICE_ERROR"

    def __init__(self, message: str, details: Any = None):
        self.details = details
        super().__init__(message)


class HttpServiceError(ServiceError):
    """Raised for transport failures and non-2xx responses."""

    code = "HTTP_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        self.status_code = status_code
        super().__init__(message, details)


class LlmServiceError(ServiceError):
    """Raised when the model endpoint fails or answers unexpectedly."""

    code = "LLM_ERROR"


class StorageError(ServiceError):
    """Raised when the key-value store cannot be read or written."""

    code = "STORAGE_ERROR"


class MessagingError(ServiceError):
    """Raised when an outbound message cannot be delivered."""

    code = "MESSAGING_ERROR"


@runtime_checkable
class HttpClient(Protocol):
    async def get(self, url: str, **options: Any) -> Any: ...

    async def post(self, url: str, body: Any = None, **options: Any) -> Any: ...

    async def request(self, method: str, url: str, body: Any = None, **options: Any) -> Any: ...


@runtime_checkable
class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...


@runtime_checkable
class LlmClient(Protocol):
    async def chat(self, messages: list[dict[str, str]], **options: Any) -> dict[str, Any]: ...


@runtime_checkable
class ChatSender(Protocol):
    async def send(self, channel: str, to: str, body: str, **options: Any) -> Any: ...
