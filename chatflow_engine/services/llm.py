"""
LLM client for OpenAI-compatible chat completion endpoints.
"""

import logging
from typing import Any, Optional

import httpx

from chatflow_engine.services.base import LlmServiceError

logger = logging.getLogger(__name__)


class OpenAICompatibleClient:
    """
    LlmClient that POSTs to {base_url}/chat/completions.

    Returns a normalized dict: content, model, usage, finish_reason.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        default_model: str = "gpt-4o-mini",
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.default_model = default_model
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def chat(self, messages: list[dict[str, str]], **options: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": options.get("model") or self.default_model,
            "messages": [m for m in messages if m.get("content")],
        }
        if options.get("temperature") is not None:
            payload["temperature"] = options["temperature"]
        if options.get("max_tokens") is not None:
            payload["max_tokens"] = options["max_tokens"]
        if options.get("tools"):
            payload["tools"] = options["tools"]

        try:
            response = await self._client.post("/chat/completions", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise LlmServiceError(f"LLM request failed: {e}", details=str(e)) from e
        except ValueError as e:
            raise LlmServiceError("LLM returned a non-JSON response") from e

        try:
            choice = body["choices"][0]
            content = choice["message"].get("content") or ""
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise LlmServiceError("LLM response has no choices", details=body) from e

        logger.debug(f"LLM {payload['model']} answered with {len(content)} characters")
        return {
            "content": content,
            "model": body.get("model", payload["model"]),
            "usage": body.get("usage"),
            "finish_reason": choice.get("finish_reason"),
        }
