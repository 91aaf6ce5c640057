"""
External data fetching with rate limiting, caching and retries.

Rate-limit and cache entries live in the storage service under keys
namespaced by session, workflow or globally (config.cacheScope), so two
conversations never share a cached response unless asked to.
"""

import asyncio
import base64
import json
import time
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

from chatflow_engine.core.models import NodeResult
from chatflow_engine.executors.base import ExecutionAborted, ExecutionContext, executor
from chatflow_engine.executors.expression import is_number, to_number
from chatflow_engine.services.http import HttpxClient
from chatflow_engine.template.resolver import get_by_path, render_path_template, to_text

BODY_METHODS = ("POST", "PUT", "PATCH", "DELETE")
DEFAULT_TIMEOUT_MS = 10000


def cache_namespace(context: ExecutionContext, config: dict[str, Any]) -> Optional[str]:
    """
    Key namespace for the configured cacheScope (session by default).

    Returns None when the scope's id is unknown; callers then skip caching
    and rate limiting rather than share one bucket between conversations.
    """
    scope = config.get("cacheScope") or "session"
    if scope == "global":
        return "global"
    if scope == "workflow":
        return f"workflow:{context.workflow_id}" if context.workflow_id else None
    return f"session:{context.session_id}" if context.session_id else None


def header_pairs(pairs: Any) -> dict[str, str]:
    headers: dict[str, str] = {}
    for pair in pairs or []:
        if isinstance(pair, dict) and pair.get("key"):
            headers[str(pair["key"])] = to_text(pair.get("value"))
    return headers


def map_response(body: Any, mappings: Any) -> dict[str, Any]:
    """Project response fields: [{"field": "temp", "path": "main.temp"}]."""
    mapped: dict[str, Any] = {}
    for mapping in mappings or []:
        if isinstance(mapping, dict) and mapping.get("field"):
            mapped[mapping["field"]] = get_by_path(body, mapping.get("path"))
    return mapped


def build_url(config: dict[str, Any], variables: dict[str, Any]) -> str:
    base_url = render_path_template(to_text(config.get("url")), variables)
    query = "&".join(
        f"{quote(str(q['key']), safe='')}={quote(render_path_template(to_text(q.get('value')), variables), safe='')}"
        for q in config.get("query") or []
        if isinstance(q, dict) and q.get("key")
    )
    if not query:
        return base_url
    return f"{base_url}{'&' if '?' in base_url else '?'}{query}"


def apply_auth(headers: dict[str, str], auth: Any, variables: dict[str, Any]) -> None:
    if not isinstance(auth, dict):
        return
    auth_type = auth.get("type")
    if auth_type == "apiKey" and auth.get("apiKeyHeader") and auth.get("apiKeyValue"):
        headers[str(auth["apiKeyHeader"])] = render_path_template(to_text(auth["apiKeyValue"]), variables)
    elif auth_type == "basic":
        credentials = f"{auth.get('basicUser') or ''}:{auth.get('basicPass') or ''}"
        headers["Authorization"] = f"Basic {base64.b64encode(credentials.encode()).decode()}"
    elif auth_type == "bearer" and auth.get("bearerToken"):
        headers["Authorization"] = f"Bearer {render_path_template(to_text(auth['bearerToken']), variables)}"


def build_body(config: dict[str, Any], headers: dict[str, str], variables: dict[str, Any]) -> Any:
    body_type = config.get("bodyType")
    if body_type == "json":
        text = render_path_template(to_text(config.get("body") or "{}"), variables)
        try:
            return json.loads(text)
        except ValueError:
            headers.setdefault("Content-Type", "application/json")
            return text
    if body_type == "form":
        headers.setdefault("Content-Type", "application/x-www-form-urlencoded")
    return render_path_template(to_text(config.get("body")), variables)


async def _send(http: Any, method: str, url: str, body: Any, headers: dict[str, str], timeout: float) -> Any:
    if method == "GET":
        return await http.get(url, headers=headers, timeout=timeout)
    return await http.post(url, body, headers=headers, method=method, timeout=timeout)


@executor("data.fetchExternal")
async def fetch_external(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    storage = context.services.storage
    log = context.logger
    namespace = cache_namespace(context, config)
    variables = {**context.vars, **context.payload}

    rate_limit = to_number(config.get("rateLimitRps")) if config.get("rateLimitRps") is not None else 0
    cache_ttl = config.get("cacheTtlSec")
    wants_cache = is_number(cache_ttl) and cache_ttl > 0
    if namespace is None and (rate_limit > 0 or wants_cache):
        log.warning(
            f"FetchExternal: no id for cacheScope '{config.get('cacheScope') or 'session'}', "
            "skipping cache and rate limit"
        )

    if rate_limit > 0 and storage is not None and namespace is not None:
        rate_key = f"fetch:{namespace}:rate"
        now = time.time() * 1000
        next_allowed = to_number(await storage.get(rate_key) or 0)
        if now < next_allowed:
            retry_at = datetime.fromtimestamp(next_allowed / 1000, tz=timezone.utc).isoformat()
            return NodeResult.success({"retryAt": retry_at}, next="rateLimited")
        await storage.set(rate_key, now + 1000 / rate_limit)

    method = to_text(config.get("method") or "GET").upper()
    url = build_url(config, variables)
    mappings = config.get("responseMapping")

    use_cache = wants_cache and storage is not None and namespace is not None
    cache_key = f"fetch:{namespace}:cache:{method}:{url}"
    if use_cache:
        cached = await storage.get(cache_key)
        if isinstance(cached, dict) and time.time() * 1000 - to_number(cached.get("ts")) < cache_ttl * 1000:
            log.debug(f"FetchExternal: cache hit for {method} {url}")
            return NodeResult.success({"response": cached.get("data"), "mapped": map_response(cached.get("data"), mappings)})

    headers = header_pairs(config.get("headers"))
    apply_auth(headers, config.get("auth"), variables)
    body = build_body(config, headers, variables) if method in BODY_METHODS else None

    retry = config.get("retry") if isinstance(config.get("retry"), dict) else {}
    max_retry = int(to_number(retry.get("count") or 0))
    backoff_ms = to_number(retry.get("backoffMs") or 0)
    timeout = to_number(config.get("timeoutMs") or DEFAULT_TIMEOUT_MS) / 1000

    owned_client: Optional[HttpxClient] = None
    http = context.services.http
    if http is None:
        owned_client = http = HttpxClient(timeout=timeout)

    last_error: Optional[Exception] = None
    try:
        for attempt in range(max_retry + 1):
            try:
                response = await context.run_abortable(_send(http, method, url, body, headers, timeout))
            except ExecutionAborted:
                raise
            except Exception as e:
                last_error = e
                log.warning(f"FetchExternal: attempt {attempt + 1} failed: {e}")
                if attempt < max_retry and backoff_ms > 0:
                    await asyncio.sleep(backoff_ms * (attempt + 1) / 1000)
                continue

            if use_cache:
                await storage.set(cache_key, {"ts": time.time() * 1000, "data": response})
            return NodeResult.success({"response": response, "mapped": map_response(response, mappings)})
    finally:
        if owned_client is not None:
            await owned_client.aclose()

    return NodeResult.failure("fetch_failed", code="FETCH_FAILED", details=str(last_error), next="error")
