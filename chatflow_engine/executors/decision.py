"""
Branching executors: ordered condition lists and value switches.
"""

import re
from typing import Any

from chatflow_engine.core.models import NodeResult
from chatflow_engine.executors.base import ExecutionContext, executor
from chatflow_engine.executors.expression import ExpressionError, evaluate, loose_equals, to_number
from chatflow_engine.template.resolver import get_by_path, to_text


def condition_matches(left: Any, operator: str, right: Any) -> bool:
    """Apply one comparison operator. Unknown operators never match."""
    if operator == "==":
        return loose_equals(left, right)
    if operator == "!=":
        return not loose_equals(left, right)
    if operator == ">":
        return to_number(left) > to_number(right)
    if operator == ">=":
        return to_number(left) >= to_number(right)
    if operator == "<":
        return to_number(left) < to_number(right)
    if operator == "<=":
        return to_number(left) <= to_number(right)
    if operator == "includes":
        if isinstance(left, list):
            return right in left
        return to_text(right) in to_text(left)
    if operator == "exists":
        return left is not None and left != ""
    if operator == "regex":
        try:
            return re.search(to_text(right), to_text(left)) is not None
        except re.error:
            return False
    return False


@executor("control.decision")
async def decision(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    """
    Evaluate conditions in order; the first match picks the branch.

    Each condition reads `leftPath` from {payload, vars, memory} and compares
    it to `rightValue`. The matching condition routes to its `route`
    (default "matched"); when none match, `defaultRoute` (default "default").
    """
    scope = context.scope()
    default_route = config.get("defaultRoute") or "default"
    conditions = config.get("conditions") if isinstance(config.get("conditions"), list) else []

    for condition in conditions:
        if not isinstance(condition, dict):
            continue
        left = get_by_path(scope, to_text(condition.get("leftPath")))
        operator = to_text(condition.get("operator") or "==")
        if condition_matches(left, operator, condition.get("rightValue")):
            return NodeResult.success({"matched": condition}, next=condition.get("route") or "matched")

    return NodeResult.success({"matched": None}, next=default_route)


@executor("control.switch")
async def switch(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    """
    Route on the value of an expression.

    The expression sees payload, memory and vars plus the shortcuts value,
    input and data (taken from vars). An expression that does not evaluate
    is compared as literal text.
    """
    expression = to_text(config.get("expression"))
    scope = {
        **context.scope(),
        "value": context.vars.get("value"),
        "input": context.vars.get("input"),
        "data": context.vars.get("data"),
    }
    try:
        value = evaluate(expression, scope)
    except ExpressionError:
        value = expression

    context.logger.info(f"Switch expression result: {value}")
    text = to_text(value)
    for case in config.get("cases") or []:
        if isinstance(case, dict) and to_text(case.get("value")) == text:
            context.logger.info(f"Routing to case: {case.get('label')}")
            return NodeResult.success(
                {"case": case.get("label"), "value": value},
                next=to_text(case.get("value")) or "default",
            )

    context.logger.info("No matching case, using default route")
    return NodeResult.success({"value": value})
