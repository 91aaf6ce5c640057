"""
WhatsApp channel executors.

whatsapp.trigger normalizes an inbound provider webhook payload to
{user_id, message, media, message_id, timestamp} and can drop redelivered
messages; whatsapp.send delivers text, template or interactive messages
through the sender service.
"""

import time
from datetime import datetime, timezone
from typing import Any

from chatflow_engine.core.models import NodeError, NodeResult, NodeStatus
from chatflow_engine.executors.base import ExecutionAborted, ExecutionContext, executor
from chatflow_engine.executors.expression import is_number
from chatflow_engine.template.resolver import render_path_template, to_text


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_whatsapp_payload(payload: Any, provider: Any) -> dict[str, Any]:
    """Map a Meta, Twilio or generic inbound payload onto one shape."""
    payload = payload if isinstance(payload, dict) else {}

    if provider == "meta":
        text = payload.get("text")
        return {
            "user_id": payload.get("from") or payload.get("wa_id"),
            "message": (text.get("body") if isinstance(text, dict) else None) or "",
            "media": payload.get("image") or payload.get("document"),
            "message_id": payload.get("id"),
            "timestamp": payload.get("timestamp"),
        }
    if provider == "twilio":
        return {
            "user_id": payload.get("From"),
            "message": payload.get("Body") or "",
            "media": payload.get("MediaUrl0"),
            "message_id": payload.get("MessageSid"),
            "timestamp": _now_iso(),
        }
    return {
        "user_id": payload.get("user_id") or payload.get("from"),
        "message": payload.get("message") or payload.get("body") or "",
        "media": payload.get("media"),
        "message_id": payload.get("message_id") or payload.get("id"),
        "timestamp": payload.get("timestamp") or _now_iso(),
    }


async def is_duplicate(context: ExecutionContext, message_id: Any, window_sec: float) -> bool:
    """
    Record message_id and report whether it was already seen in the window.

    Seen ids live in the storage service so every worker shares them.
    """
    storage = context.services.storage
    if storage is None:
        context.logger.warning("WhatsApp dedupe skipped: storage service not available")
        return False

    key = f"whatsapp:dedupe:{message_id}"
    now = time.time() * 1000
    seen_at = await storage.get(key)
    if is_number(seen_at) and now - seen_at < window_sec * 1000:
        return True
    await storage.set(key, now)
    return False


@executor("whatsapp.trigger")
async def whatsapp_trigger(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    raw = context.payload.get("providerPayload", context.payload)
    normalized = normalize_whatsapp_payload(raw, config.get("provider"))
    context.logger.info(f"Received WhatsApp message from user: {normalized['user_id']}")

    window = config.get("dedupeWindowSec")
    if is_number(window) and window > 0 and normalized["message_id"]:
        if await is_duplicate(context, normalized["message_id"], window):
            context.logger.warning(f"Duplicate message detected: {normalized['message_id']}")
            return NodeResult.failure("Duplicate message", code="DEDUP")

    return NodeResult.success(normalized)


@executor("whatsapp.send")
async def whatsapp_send(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    """
    Send a WhatsApp message to the payload's user.

    With retryOnFail a failed delivery returns a retry result carrying the
    error, which the dispatcher re-invokes; otherwise it routes to "error".
    """
    sender = context.services.sender
    if sender is None:
        return NodeResult.failure("Send message service not available", code="NO_SERVICE")

    provider = config.get("provider")
    scope = {**context.vars, "payload": context.payload, "memory": context.memory}
    text = render_path_template(to_text(config.get("text")), scope, keep_missing=True)
    user_id = context.payload.get("user_id") or context.payload.get("from") or ""

    options: dict[str, Any] = {"provider": provider}
    if config.get("messageType") == "template" and config.get("templateId"):
        options["templateId"] = config["templateId"]
    elif config.get("messageType") == "interactive" and config.get("interactive"):
        options["interactive"] = config["interactive"]

    context.logger.info(f"Sending WhatsApp message via {provider}")
    try:
        if not user_id:
            raise ValueError("No user_id found in payload")
        result = await context.run_abortable(sender.send("whatsapp", str(user_id), text, **options))
    except ExecutionAborted:
        raise
    except Exception as e:
        context.logger.error(f"WhatsApp send failed: {e}")
        if config.get("retryOnFail"):
            return NodeResult.retry(NodeError(message=str(e), code="SEND_ERROR"))
        return NodeResult(status=NodeStatus.ERROR, data={"sent": False, "error": str(e)}, next="error")

    result = result if isinstance(result, dict) else {}
    message_id = result.get("messageId") or result.get("id")
    context.logger.info(f"Message sent successfully: {message_id or 'unknown'}")
    return NodeResult.success(
        {
            "sent": True,
            "messageId": message_id,
            "timestamp": _now_iso(),
            "userId": user_id,
            "provider": provider,
        }
    )
