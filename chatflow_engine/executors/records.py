"""
Executors that persist data: record batches and single-row saves.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from chatflow_engine.core.models import NodeResult
from chatflow_engine.executors.base import ExecutionContext, executor
from chatflow_engine.executors.expression import is_number
from chatflow_engine.services.http import HttpxClient
from chatflow_engine.template.resolver import TEMPLATE_PATTERN, get_by_path, to_text

REMOTE_DESTINATIONS = ("google_sheets", "sheets", "supabase")
LOCAL_DESTINATIONS = ("kv", "local_storage")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ==================== Record batches ====================


def map_record(record: Any, mapping: Any) -> Any:
    """Apply [{"from": path, "to": field}] to one record; no mapping keeps it."""
    if not mapping:
        return dict(record) if isinstance(record, dict) else record
    return {
        m["to"]: get_by_path(record, m.get("from"))
        for m in mapping
        if isinstance(m, dict) and m.get("to")
    }


def chunked(items: list[Any], size: Any) -> list[list[Any]]:
    if not is_number(size) or size <= 0:
        return [items]
    size = int(size)
    return [items[i:i + size] for i in range(0, len(items), size)]


async def append_records(storage: Any, key: str, records: list[Any]) -> None:
    previous = await storage.get(key) or []
    await storage.set(key, [*previous, *records])


async def upsert_records(storage: Any, key: str, records: list[Any], upsert_key: str) -> None:
    previous: list[Any] = await storage.get(key) or []
    positions = {
        to_text(row.get(upsert_key)): i for i, row in enumerate(previous) if isinstance(row, dict)
    }
    for record in records:
        record_key = to_text(record.get(upsert_key)) if isinstance(record, dict) else to_text(record)
        if record_key in positions:
            previous[positions[record_key]] = record
        else:
            positions[record_key] = len(previous)
            previous.append(record)
    await storage.set(key, previous)


async def post_chunks(context: ExecutionContext, url: str, chunks: list[list[Any]], headers: dict[str, str]) -> None:
    owned_client: Optional[HttpxClient] = None
    http = context.services.http
    if http is None:
        owned_client = http = HttpxClient()
    try:
        for chunk in chunks:
            await http.post(url, {"records": chunk}, headers=headers)
    finally:
        if owned_client is not None:
            await owned_client.aclose()


@executor("data.storeRecords")
async def store_records(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    """
    Store a list of records from the payload.

    Records come from `recordsPath` (default: the payload itself), are mapped
    through `fieldMapping`, optionally stamped, then either POSTed in
    batches to `httpUrl` or appended/upserted into storage under `key`.
    Failures route to "error" with data.error.
    """
    try:
        found = get_by_path({"payload": context.payload}, config.get("recordsPath") or "payload")
        records = found if isinstance(found, list) else []
        if not records:
            return NodeResult.success({"stored": 0, "reason": "no_records"})

        timestamp_field = (config.get("timestampField") or "_ts") if config.get("addTimestamp") else None
        mapped = []
        for record in records:
            row = map_record(record, config.get("fieldMapping"))
            if timestamp_field and isinstance(row, dict):
                row[timestamp_field] = utc_now()
            mapped.append(row)

        if config.get("destination") == "http":
            headers = {
                str(h["key"]): to_text(h.get("value"))
                for h in config.get("httpHeaders") or []
                if isinstance(h, dict) and h.get("key")
            }
            await post_chunks(context, to_text(config.get("httpUrl")), chunked(mapped, config.get("batchSize")), headers)
            return NodeResult.success({"stored": len(mapped), "destination": "http"})

        storage = context.services.storage
        if storage is None:
            return NodeResult.success({"error": "no_storage_service"}, next="error")

        key = to_text(config.get("key") or "records")
        if config.get("mode") == "upsert":
            if not config.get("upsertKey"):
                return NodeResult.success({"error": "missing_upsertKey"}, next="error")
            await upsert_records(storage, key, mapped, to_text(config["upsertKey"]))
        else:
            await append_records(storage, key, mapped)

        return NodeResult.success({"stored": len(mapped), "destination": "storage"})
    except Exception as e:
        context.logger.error(f"StoreRecords failed: {e}")
        return NodeResult.success({"error": str(e)}, next="error")


# ==================== Single saves ====================


def parse_date(value: Any) -> str:
    """ISO timestamp for an ISO string or epoch milliseconds."""
    if isinstance(value, datetime):
        parsed = value
    elif is_number(value):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"Invalid date: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat()


def transform_value(value: Any, transform: Optional[str]) -> Any:
    if transform == "uppercase":
        return to_text(value).upper()
    if transform == "lowercase":
        return to_text(value).lower()
    if transform == "date":
        return parse_date(value)
    return value


def build_row(context: ExecutionContext, config: dict[str, Any]) -> dict[str, Any]:
    """Row to save: fieldMapping over {payload, **vars}, or the whole payload."""
    mapping = config.get("fieldMapping")
    if not mapping:
        return dict(context.payload)

    source_scope = {"payload": context.payload, **context.vars}
    row: dict[str, Any] = {}
    for field in mapping:
        if not isinstance(field, dict) or not field.get("target"):
            continue
        source = to_text(field.get("source")).strip()
        match = TEMPLATE_PATTERN.fullmatch(source)
        path = match.group(1) if match else source
        row[field["target"]] = transform_value(get_by_path(source_scope, path), field.get("transform"))
    return row


@executor("storage.save")
async def storage_save(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    """
    Save one row to the key-value store or forward it to a remote table.

    Destinations:
        kv / local_storage: storage key workflow_data:<sheetId>:<epoch ms>
        google_sheets / sheets / supabase: POSTed to config.endpoint
    """
    destination = config.get("destination") or "kv"
    storage = context.services.storage

    if destination in LOCAL_DESTINATIONS and storage is None:
        return NodeResult.failure("Storage service not available", code="NO_STORAGE")
    if destination not in LOCAL_DESTINATIONS and destination not in REMOTE_DESTINATIONS:
        return NodeResult.failure(f"Unknown destination: {destination}", code="UNKNOWN_DESTINATION")

    try:
        row = build_row(context, config)
        if config.get("includeTimestamp") is not False:
            row["timestamp"] = utc_now()

        if destination in LOCAL_DESTINATIONS:
            key = f"workflow_data:{config.get('sheetId') or 'default'}:{int(datetime.now(timezone.utc).timestamp() * 1000)}"
            await storage.set(key, row)
            context.logger.info(f"Data saved to storage: {key}")
            return NodeResult.success({"key": key, "saved": True}, next="success")

        endpoint = config.get("endpoint")
        if not endpoint:
            return NodeResult.failure(f"No endpoint configured for {destination}", code="NO_ENDPOINT", next="error")

        request = {
            "destination": destination,
            "target": config.get("sheetId"),
            "sheetName": config.get("sheetName"),
            "writeMode": config.get("writeMode"),
            "primaryKey": config.get("primaryKey"),
            "onConflict": config.get("onConflict"),
            "record": row,
        }
        owned_client: Optional[HttpxClient] = None
        http = context.services.http
        if http is None:
            owned_client = http = HttpxClient()
        try:
            response = await http.post(to_text(endpoint), request)
        finally:
            if owned_client is not None:
                await owned_client.aclose()

        context.logger.info(f"Data saved to {destination}: {config.get('sheetId')}")
        return NodeResult.success(response, next="success")
    except Exception as e:
        context.logger.error(f"Storage save failed: {e}")
        return NodeResult.failure(str(e), code="STORAGE_ERROR", next="error")
