"""
Broiler farm executors: cycle performance metrics and harvest reports.

Performance values (FCR, ADG, mortality_pct) are the fields the
PERFORMANCE_UPDATE and HARVEST_SUMMARY catalog templates render.
"""

import math
import time
from typing import Any, Optional

from chatflow_engine.core.models import NodeResult
from chatflow_engine.executors.base import ExecutionAborted, ExecutionContext, executor
from chatflow_engine.executors.calculate import round_to
from chatflow_engine.executors.expression import to_number
from chatflow_engine.template.catalog import render_catalog_template

PERFORMANCE_INPUTS = ("feed", "avg_weight", "mortality", "population_start")
DEFAULT_REPORT_TEMPLATE = "HARVEST_SUMMARY"
DEFAULT_REPORT_BASE_URL = "/reports"


def first_value(context: ExecutionContext, name: str, *, memory_first: bool = False) -> Any:
    """First truthy reading of `name` from payload and memory."""
    sources = (context.memory, context.payload) if memory_first else (context.payload, context.memory)
    for source in sources:
        value = source.get(name)
        if value:
            return value
    return None


def _number(value: Any, default: float) -> float:
    number = to_number(value) if value is not None else default
    return default if math.isnan(number) else number


def performance_metrics(
    feed: float,
    avg_weight: float,
    mortality: float,
    population_start: float,
    days: float,
) -> dict[str, Optional[float]]:
    """
    Compute broiler cycle metrics.

    Args:
        feed: Feed consumed over the cycle (kg)
        avg_weight: Average bird weight (grams)
        mortality: Birds lost
        population_start: Birds placed
        days: Cycle age in days

    Returns:
        {"FCR", "ADG", "mortality_pct"}; FCR is None while no weight was gained
    """
    adg = avg_weight / days
    mortality_pct = mortality / population_start * 100 if population_start > 0 else 0
    weight_gain_kg = avg_weight / 1000 * (population_start - mortality)
    fcr = feed / weight_gain_kg if weight_gain_kg > 0 else None
    return {"FCR": fcr, "ADG": adg, "mortality_pct": round_to(mortality_pct, 2)}


@executor("process.performanceCalc")
async def performance_calc(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    """
    Calculate FCR, ADG and mortality percentage for the current cycle.

    Inputs are read from the payload, then memory. Results are returned as
    data and written to memory both flat and under lastPerformance.
    """
    readings = {name: _number(first_value(context, name), 0) for name in PERFORMANCE_INPUTS}
    days = _number(first_value(context, "days"), 1) or 1

    results = performance_metrics(days=days, **readings)
    context.logger.info(
        f"Performance calculated: FCR={results['FCR']} ADG={results['ADG']} "
        f"mortality_pct={results['mortality_pct']} days={days}"
    )
    return NodeResult.success(results, updated_memory={"lastPerformance": results, **results})


@executor("report.generate")
async def report_generator(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    """
    Assemble a harvest report and optionally notify the farm owner.

    The report text is the configured catalog template rendered over the
    harvest data; with "whatsapp" among config.outputs it is sent to
    owner_phone when a sender is available.
    """
    outputs = config.get("outputs") or ["pdf"]
    template_id = config.get("templateId") or DEFAULT_REPORT_TEMPLATE
    base_url = str(config.get("reportBaseUrl") or DEFAULT_REPORT_BASE_URL).rstrip("/")

    farm_id = first_value(context, "farmId", memory_first=True) or "unknown"
    cycle_id = first_value(context, "cycleId", memory_first=True) or str(int(time.time() * 1000))

    last_performance = context.memory.get("lastPerformance")
    harvest_data = {
        "farmId": farm_id,
        "cycleId": cycle_id,
        "qty": first_value(context, "qty"),
        "total_weight": first_value(context, "total_weight"),
        **(last_performance if isinstance(last_performance, dict) else {}),
    }
    report_url = f"{base_url}/{farm_id}_{cycle_id}_harvest_report.pdf"
    summary = render_catalog_template(
        template_id,
        {**context.memory, **context.payload, **harvest_data, "pdfUrl": report_url},
    )

    notified = False
    if "whatsapp" in outputs:
        owner_phone = first_value(context, "owner_phone", memory_first=True)
        sender = context.services.sender
        if owner_phone and sender is not None:
            message = summary or (
                f"📦 Laporan Panen siap!\nFarm: {farm_id}\nSiklus: {cycle_id}\nLihat laporan: {report_url}"
            )
            try:
                await context.run_abortable(sender.send("whatsapp", str(owner_phone), message))
            except ExecutionAborted:
                raise
            except Exception as e:
                context.logger.error(f"Report notification failed: {e}")
                return NodeResult.failure(str(e), code="REPORT_GEN_ERROR", details=getattr(e, "details", None))
            notified = True
        else:
            context.logger.warning("Report notification skipped: no owner_phone or sender")

    context.logger.info(f"Report generated for farm {farm_id}, cycle {cycle_id}: {report_url}")
    return NodeResult.success(
        {"reportUrl": report_url, "harvestData": harvest_data, "summary": summary, "notified": notified},
        updated_memory={"lastReportUrl": report_url, "reportData": harvest_data},
    )
