"""
Executors that talk to the end user.
"""

import re
from typing import Any, Optional

from chatflow_engine.core.models import NodeResult
from chatflow_engine.executors.base import ExecutionContext, executor
from chatflow_engine.executors.expression import is_number, to_number
from chatflow_engine.template.resolver import to_text


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def normalize_response(config: dict[str, Any], raw: Any) -> tuple[bool, Any, Optional[str]]:
    """
    Validate a user's answer against the question's response type.

    Returns:
        (valid, normalized value, reason when invalid)
    """
    if _is_blank(raw):
        if config.get("required") is not False:
            return False, None, "required"
        return True, raw, None

    response_type = config.get("responseType")

    if response_type == "number":
        number = raw if is_number(raw) else to_number(raw)
        if number != number:
            return False, None, "not_a_number"
        min_value = config.get("minValue")
        max_value = config.get("maxValue")
        if is_number(min_value) and number < min_value:
            return False, None, "lt_min"
        if is_number(max_value) and number > max_value:
            return False, None, "gt_max"
        return True, number, None

    if response_type == "choice":
        choices = config.get("choices")
        if not isinstance(choices, list) or not choices:
            return False, None, "choices_missing"
        text = to_text(raw)
        if text not in choices:
            return False, None, "not_in_choices"
        return True, text, None

    text = to_text(raw)
    pattern = config.get("validationRegex")
    if pattern:
        try:
            if not re.search(pattern, text):
                return False, None, "regex_failed"
        except re.error:
            # An unusable pattern does not block the answer
            pass
    return True, text, None


@executor("interaction.askQuestion")
async def ask_question(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    """
    Ask the user a question, then validate the answer on a later call.

    Without `payload.userResponse` the question is sent and a retry result
    returned, meaning "call me again once the user has answered".
    """
    services = context.services
    log = context.logger
    capture_metrics = config.get("captureMetrics", True)
    user_id = context.user_id or context.vars.get("userId") or context.payload.get("userId")

    if "userResponse" not in context.payload:
        if services.sender is not None and user_id:
            await services.sender.send(
                "whatsapp",
                str(user_id),
                to_text(config.get("question")),
                choices=config.get("choices"),
                response_type=config.get("responseType"),
            )
        if capture_metrics:
            log.info(f"AskQuestion: question sent from node {context.node_id}")
        return NodeResult.retry()

    valid, value, reason = normalize_response(config, context.payload.get("userResponse"))
    if not valid:
        if capture_metrics:
            log.warning(f"AskQuestion: invalid response ({reason})")
        return NodeResult.success({"reason": reason}, next="invalid")

    memory_key = config.get("saveToMemoryKey")
    if memory_key and services.storage is not None:
        try:
            current = await services.storage.get("memory") or {}
            current[memory_key] = value
            await services.storage.set("memory", current)
        except Exception as e:
            log.warning(f"AskQuestion: failed to persist to memory: {e}")

    if capture_metrics:
        log.info(f"AskQuestion: response accepted on node {context.node_id}")
    return NodeResult.success({"value": value})
