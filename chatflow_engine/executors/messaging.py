"""
Outbound message executor.
"""

import re
from datetime import datetime, timezone
from typing import Any

from chatflow_engine.core.models import NodeResult
from chatflow_engine.executors.base import ExecutionContext, executor
from chatflow_engine.template.resolver import render_path_template

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?\d{8,15}$")
PHONE_CHANNELS = ("whatsapp", "sms")


def recipient_error(channel: str, to: str) -> str | None:
    if channel == "email" and not EMAIL_PATTERN.match(to):
        return "invalid_email"
    if channel in PHONE_CHANNELS and not PHONE_PATTERN.match(to):
        return "invalid_phone"
    return None


@executor("comm.sendMessage")
async def send_message(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    """Render and send a message, optionally appending it to a history list."""
    services = context.services
    scope = context.scope()

    channel = config.get("channel") or "whatsapp"
    to = render_path_template(config.get("to") or "", scope)
    body = render_path_template(config.get("template") or "", scope)

    if config.get("validateRecipient"):
        error = recipient_error(channel, to)
        if error:
            return NodeResult.success({"error": error}, next="error")

    try:
        if services.sender is not None:
            await services.sender.send(channel, to, body, attachments=config.get("attachments"))
        else:
            context.logger.info(f"SendMessage simulated: {channel}:{to}: {body}")

        history_key = config.get("historyKey")
        if config.get("saveToHistory") and history_key and services.storage is not None:
            key = f"history:{history_key}"
            history = await services.storage.get(key) or []
            history.append({
                "ts": datetime.now(timezone.utc).isoformat(),
                "channel": channel,
                "to": to,
                "body": body,
            })
            await services.storage.set(key, history)
    except Exception as e:
        context.logger.error(f"SendMessage failed: {e}")
        return NodeResult.success({"error": str(e)}, next="error")

    return NodeResult.success({"channel": channel, "to": to})
