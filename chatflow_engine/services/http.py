"""
HTTP client service backed by httpx.

Wraps a shared httpx.AsyncClient; responses are decoded as JSON when
possible and non-2xx statuses raise HttpServiceError.
"""

import logging
from typing import Any, Optional

import httpx

from chatflow_engine.services.base import HttpServiceError

logger = logging.getLogger(__name__)


def decode_response(response: httpx.Response) -> Any:
    """JSON body if it parses, raw text otherwise."""
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpxClient:
    """
    HttpClient implementation.

    A single AsyncClient is reused for connection pooling; call aclose() when
    the session ends (or use it as an async context manager).
    """

    def __init__(
        self,
        base_url: str = "",
        headers: Optional[dict[str, str]] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers=headers or {},
            timeout=timeout,
        )

    async def __aenter__(self) -> "HttpxClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get(self, url: str, **options: Any) -> Any:
        return await self.request("GET", url, **options)

    async def post(self, url: str, body: Any = None, **options: Any) -> Any:
        method = options.pop("method", "POST")
        return await self.request(method, url, body, **options)

    async def request(
        self,
        method: str,
        url: str,
        body: Any = None,
        headers: Optional[dict[str, str]] = None,
        params: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
        **_: Any,
    ) -> Any:
        """
        Send a request and return the decoded body.

        Dict and list bodies are sent as JSON; strings are sent verbatim.
        """
        kwargs: dict[str, Any] = {"headers": headers or {}, "params": params}
        if timeout is not None:
            kwargs["timeout"] = timeout
        if body is not None and method.upper() != "GET":
            if isinstance(body, (dict, list)):
                kwargs["json"] = body
            else:
                kwargs["content"] = str(body)

        try:
            response = await self._client.request(method.upper(), url, **kwargs)
        except httpx.HTTPError as e:
            raise HttpServiceError(f"HTTP {method.upper()} {url} failed: {e}", details=str(e)) from e

        if response.is_error:
            raise HttpServiceError(
                f"HTTP {method.upper()} error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                details=decode_response(response),
            )

        logger.debug(f"HTTP {method.upper()} {url} -> {response.status_code}")
        return decode_response(response)
