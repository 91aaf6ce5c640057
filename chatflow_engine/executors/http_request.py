"""
Generic HTTP request executor.
"""

import json
from typing import Any
from urllib.parse import urlencode

from chatflow_engine.core.models import NodeError, NodeResult
from chatflow_engine.executors.base import ExecutionAborted, ExecutionContext, executor
from chatflow_engine.template.resolver import render_path_template, to_text

BODY_METHODS = ("POST", "PUT", "PATCH")


@executor("http.request")
async def http_request(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    """
    Call an HTTP endpoint and route to "success" or "error".

    URL, query parameters, header values and body accept {{ path }}
    placeholders over the vars plus `payload`; unresolved placeholders are
    left in place. With retryOnFailure a failed call returns a retry result
    instead of an error.
    """
    http = context.services.http
    if http is None:
        return NodeResult.failure("HTTP service not available", code="NO_HTTP_SERVICE")

    variables = {**context.vars, "payload": context.payload}

    def render(value: Any) -> str:
        return render_path_template(to_text(value), variables, keep_missing=True)

    method = to_text(config.get("method") or "GET").upper()
    try:
        url = render(config.get("url"))
        params = [
            (render(p.get("key")), render(p.get("value")))
            for p in config.get("queryParams") or []
            if isinstance(p, dict)
        ]
        if params:
            url = f"{url}?{urlencode(params)}"

        headers: dict[str, str] = {}
        auth_token = config.get("authToken")
        if config.get("authType") == "bearer" and auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        elif config.get("authType") == "apiKey" and auth_token:
            headers["X-API-Key"] = to_text(auth_token)
        for header in config.get("headers") or []:
            if isinstance(header, dict) and header.get("key"):
                headers[str(header["key"])] = render(header.get("value"))

        if method == "GET":
            response = await context.run_abortable(http.get(url, headers=headers))
        elif method in BODY_METHODS:
            body: Any = render(config.get("body") or "{}")
            if config.get("bodyType") == "json":
                body = json.loads(body)
            response = await context.run_abortable(http.post(url, body, headers=headers, method=method))
        elif method == "DELETE":
            response = await context.run_abortable(http.request("DELETE", url, headers=headers))
        else:
            return NodeResult.failure(f"Unsupported method: {method}", code="HTTP_ERROR", next="error")
    except ExecutionAborted:
        raise
    except Exception as e:
        context.logger.error(f"HTTP request failed: {e}")
        details = {"status_code": getattr(e, "status_code", None), "body": getattr(e, "details", None)}
        if config.get("retryOnFailure"):
            return NodeResult.retry(NodeError(message=str(e), code="HTTP_ERROR", details=details))
        return NodeResult.failure(str(e), code="HTTP_ERROR", details=details, next="error")

    context.logger.info(f"HTTP {method} request successful: {url}")
    return NodeResult.success(response, next="success")
