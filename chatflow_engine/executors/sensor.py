"""
Sensor reading intake.
"""

from datetime import datetime, timezone
from typing import Any

from chatflow_engine.core.models import NodeResult
from chatflow_engine.executors.base import ExecutionContext, executor
from chatflow_engine.executors.expression import is_number, to_number
from chatflow_engine.template.resolver import get_by_path, to_text

LATEST_READINGS_KEY = "sensor.latest"


@executor("sensor.data")
async def sensor_data(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    """
    Extract and coerce the configured metrics from the payload.

    A reading is dropped (next="dropped") when a required metric is missing,
    a number metric is not numeric, or, with dropOutOfRange, a value falls
    outside min/max.
    """
    metrics: dict[str, Any] = {}
    drop_reason = None

    for metric in config.get("metrics") or []:
        if not isinstance(metric, dict):
            continue
        metric_id = metric.get("id")
        raw = get_by_path(context.payload, metric.get("path"))

        if raw is None or raw == "":
            if metric.get("required") is not False:
                drop_reason = f"required_missing:{metric_id}"
                break
            metrics[metric_id] = raw
            continue

        metric_type = metric.get("type")
        if metric_type == "number":
            number = raw if is_number(raw) else to_number(raw)
            if number != number:
                drop_reason = f"not_a_number:{metric_id}"
                break
            if config.get("dropOutOfRange"):
                if is_number(metric.get("min")) and number < metric["min"]:
                    drop_reason = f"lt_min:{metric_id}"
                    break
                if is_number(metric.get("max")) and number > metric["max"]:
                    drop_reason = f"gt_max:{metric_id}"
                    break
            metrics[metric_id] = number
        elif metric_type == "boolean":
            metrics[metric_id] = bool(raw)
        else:
            metrics[metric_id] = to_text(raw)

    if drop_reason:
        context.logger.warning(f"SensorData: reading dropped ({drop_reason})")
        return NodeResult.success({"reason": drop_reason}, next="dropped")

    memory_key = config.get("saveToMemoryKey")
    storage = context.services.storage
    if memory_key and storage is not None:
        try:
            latest = await storage.get(LATEST_READINGS_KEY) or {}
            latest[memory_key] = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "metrics": metrics,
            }
            await storage.set(LATEST_READINGS_KEY, latest)
        except Exception as e:
            context.logger.warning(f"SensorData: failed to persist reading: {e}")

    return NodeResult.success({"metrics": metrics})
