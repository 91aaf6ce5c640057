"""
Conversation memory executors.

Keys are scoped:
    user      -> memory:user:<key>
    session   -> memory:session:<session id>:<key>
    workflow  -> memory:workflow:<workflow_id>:<key>
Any other scope uses the key as-is. The session id is the execution id,
falling back to the user id; a scoped key whose id is unknown is an error.
"""

from typing import Any, Optional

from chatflow_engine.core.models import NodeResult
from chatflow_engine.executors.base import ExecutionContext, executor
from chatflow_engine.template.resolver import render_path_template, to_text


def memory_key(context: ExecutionContext, config: dict[str, Any]) -> Optional[str]:
    """Storage key for config.key, or None when its scope id is missing."""
    variables = {
        **context.vars,
        "userId": context.user_id,
        "workflowId": context.workflow_id,
        "executionId": context.execution_id,
    }
    key = render_path_template(to_text(config.get("key")), variables, keep_missing=True)

    scope = config.get("scope")
    if scope == "user":
        return f"memory:user:{key}"
    if scope == "session":
        return f"memory:session:{context.session_id}:{key}" if context.session_id else None
    if scope == "workflow":
        return f"memory:workflow:{context.workflow_id}:{key}" if context.workflow_id else None
    return key


def _missing_scope(config: dict[str, Any]) -> NodeResult:
    return NodeResult.failure(
        f"No id available for memory scope '{config.get('scope')}'",
        code="NO_SCOPE_ID",
        next="error",
    )


@executor("memory.get")
async def memory_get(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    storage = context.services.storage
    if storage is None:
        return NodeResult.failure("Storage service not available", code="NO_STORAGE")

    key = memory_key(context, config)
    if key is None:
        return _missing_scope(config)
    try:
        value = await storage.get(key)
    except Exception as e:
        context.logger.error(f"Memory get failed: {e}")
        return NodeResult.failure(str(e), code="MEMORY_ERROR")

    context.logger.info(f"Retrieved memory from key: {key}")
    return NodeResult.success(value)


@executor("memory.set")
async def memory_set(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
    """Write config.value; with merge, dict values are merged into the stored dict."""
    storage = context.services.storage
    if storage is None:
        return NodeResult.failure("Storage service not available", code="NO_STORAGE")

    key = memory_key(context, config)
    if key is None:
        return _missing_scope(config)
    value = config.get("value")
    try:
        if config.get("merge") and isinstance(value, dict):
            existing = await storage.get(key)
            if isinstance(existing, dict):
                value = {**existing, **value}
        await storage.set(key, value)
    except Exception as e:
        context.logger.error(f"Memory set failed: {e}")
        return NodeResult.failure(str(e), code="MEMORY_ERROR")

    context.logger.info(f"Stored memory to key: {key}")
    return NodeResult.success(value, updated_memory={key: value})
