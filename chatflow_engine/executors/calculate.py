"""
Arithmetic over payload values and constants.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from chatflow_engine.core.models import NodeResult
from chatflow_engine.executors.base import ExecutionContext, executor
from chatflow_engine.executors.expression import (
    ExpressionError,
    evaluate_arithmetic,
    is_number,
    to_number,
)
from chatflow_engine.template.resolver import get_by_path, to_text

DEFAULT_PRECISION = 2


def build_scope(context: ExecutionContext, config: dict[str, Any]) -> dict[str, float]:
    """
    Numeric scope for expressions.

    Each variable reads its path from the payload, then vars, then falls
    back to its default; constants are added last and win on name clashes.
    """
    scope: dict[str, float] = {}
    for variable in config.get("variables") or []:
        if not isinstance(variable, dict) or not variable.get("name"):
            continue
        path = variable.get("path")
        raw = get_by_path(context.payload, path)
        if raw is None:
            raw = get_by_path(context.vars, path)
        if raw is None:
            raw = variable.get("default")
        if raw is not None and raw != "":
            scope[variable["name"]] = to_number(raw)
    for constant in config.get("constants") or []:
        if isinstance(constant, dict) and constant.get("name"):
            scope[constant["name"]] = to_number(constant.get("value"))
    return scope


def round_to(value: float, precision: Any) -> float:
    """Round half away from zero; integral results come back as int."""
    if not is_number(precision):
        return value
    if precision < 0 or precision > 100 or precision != int(precision):
        raise ExpressionError(f"precision must be an integer between 0 and 100, got {precision}")
    quantum = Decimal(1).scaleb(-int(precision))
    rounded = float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))
    return int(rounded) if rounded.is_integer() else rounded


@executor("process.calculate")
async def calculate(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    scope = build_scope(context, config)
    expressions = [e for e in config.get("expressions") or [] if isinstance(e, dict)]
    outputs: dict[str, Any] = {}

    try:
        for entry in expressions:
            value = evaluate_arithmetic(to_text(entry.get("expr")), scope)
            if is_number(entry.get("clampMin")) and value < entry["clampMin"]:
                value = entry["clampMin"]
            if is_number(entry.get("clampMax")) and value > entry["clampMax"]:
                value = entry["clampMax"]
            precision = entry.get("precision")
            if not is_number(precision):
                precision = DEFAULT_PRECISION
            rounded = round_to(value, precision)
            outputs[entry.get("field")] = f"{to_text(rounded)} {entry['unit']}" if entry.get("unit") else rounded
    except ExpressionError as e:
        on_error = config.get("onError")
        if on_error in ("null", "zero"):
            fill = None if on_error == "null" else 0
            context.logger.warning(f"Calculate: {e}, filling outputs with {fill}")
            return NodeResult.success({"calculations": {entry.get("field"): fill for entry in expressions}})
        context.logger.warning(f"Calculate: {e}")
        return NodeResult.success({"error": str(e)}, next="error")

    return NodeResult.success({"calculations": outputs})
