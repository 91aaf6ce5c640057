"""
Field validation executor.
"""

import math
import re
from datetime import datetime
from typing import Any, Optional

from chatflow_engine.core.models import NodeResult
from chatflow_engine.executors.base import ExecutionContext, executor
from chatflow_engine.executors.expression import ExpressionError, evaluate, is_number, to_number
from chatflow_engine.template.resolver import get_by_path, to_text

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^[\+]?[(]?[0-9]{3}[)]?[-\s\.]?[0-9]{3}[-\s\.]?[0-9]{4,6}$")


def is_date(value: Any) -> bool:
    if isinstance(value, datetime) or is_number(value):
        return True
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


def run_rule(rule: dict[str, Any], value: Any, context: ExecutionContext) -> tuple[bool, Optional[str]]:
    """
    Apply one rule. Unknown rule types pass.

    Returns:
        (valid, message) where message overrides the rule's errorMessage
    """
    rule_type = rule.get("type")
    params = rule.get("params") if isinstance(rule.get("params"), dict) else {}

    if rule_type == "required":
        return value is not None and value != "", None
    if rule_type == "email":
        return bool(EMAIL_PATTERN.match(to_text(value))), None
    if rule_type == "phone":
        return bool(PHONE_PATTERN.match(to_text(value))), None
    if rule_type == "number":
        return is_number(value) and not math.isnan(value), None
    if rule_type == "min":
        return to_number(value) >= to_number(params.get("min") or 0), None
    if rule_type == "max":
        limit = params.get("max")
        return to_number(value) <= (to_number(limit) if limit else math.inf), None
    if rule_type == "date":
        return is_date(value), None
    if rule_type == "regex":
        if not rule.get("pattern"):
            return True, None
        try:
            return re.search(rule["pattern"], to_text(value)) is not None, None
        except re.error as e:
            return False, f"Invalid pattern: {e}"
    if rule_type in ("expression", "js"):
        code = to_text(params.get("code")).strip()
        if not code:
            return True, None
        try:
            return bool(evaluate(code, {"value": value, "payload": context.payload})), None
        except ExpressionError as e:
            return False, f"Expression evaluation failed: {e}"
    return True, None


@executor("validation.basic")
async def validation_basic(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    """
    Validate payload[fieldName] against a list of rules.

    Any failing rule routes to "error" with the collected messages.
    """
    field_name = config.get("fieldName")
    value = get_by_path(context.payload, field_name)

    errors: list[str] = []
    for rule in config.get("rules") or []:
        if not isinstance(rule, dict):
            continue
        valid, message = run_rule(rule, value, context)
        if not valid:
            errors.append(message or rule.get("errorMessage") or "Validation failed")

    if errors:
        context.logger.warning(f"Validation failed: {', '.join(errors)}")
        return NodeResult.success(
            {"isValid": False, "errors": errors, "fieldName": field_name, "value": value},
            next="error",
        )

    context.logger.info(f"Validation passed for field: {field_name}")
    return NodeResult.success({"isValid": True, "fieldName": field_name, "value": value})
