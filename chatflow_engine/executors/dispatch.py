"""
Node dispatch: timeout, retry and routing around executor calls.
"""

import asyncio
import logging
from typing import Any, Optional

from chatflow_engine.config import get_settings
from chatflow_engine.config.settings import Settings
from chatflow_engine.core.models import FSM, NodeResult, NodeStatus
from chatflow_engine.executors.base import ExecutionContext, ExecutorRegistry, default_registry
from chatflow_engine.services.container import Services

logger = logging.getLogger(__name__)


def resolve_next(fsm: FSM, node_id: str, result: NodeResult) -> Optional[str]:
    """
    Pick the node an executor result routes to.

    The outgoing edge whose label or condition equals `result.next`
    (case-insensitive) wins. "default" or an empty branch falls back to the
    first outgoing edge. Retry results, and error results that name no
    branch, do not advance.

    Returns:
        Target node id, or None when the result does not route anywhere
    """
    if result.status == NodeStatus.RETRY:
        return None

    wanted = (result.next or "").strip().lower()
    if not wanted and result.status == NodeStatus.ERROR:
        return None

    edges = fsm.outgoing(node_id)
    for edge in edges:
        names = {(edge.label or "").strip().lower(), (edge.condition or "").strip().lower()}
        if wanted and wanted in names:
            return edge.to

    if wanted in ("", "default") and edges:
        return edges[0].to
    return None


class NodeDispatcher:
    """
    Runs executors on behalf of a session.

    Each call gets a fresh ExecutionContext; the Services bag is shared.
    """

    def __init__(
        self,
        registry: Optional[ExecutorRegistry] = None,
        services: Optional[Services] = None,
        settings: Optional[Settings] = None,
    ):
        self.registry = default_registry if registry is None else registry
        self.services = services or Services()
        self.settings = settings or get_settings()

    def build_context(
        self,
        payload: Optional[dict[str, Any]] = None,
        memory: Optional[dict[str, Any]] = None,
        vars: Optional[dict[str, Any]] = None,
        user_id: Optional[str] = None,
        node_id: Optional[str] = None,
        node_type: Optional[str] = None,
        workflow_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        abort_event: Optional[asyncio.Event] = None,
    ) -> ExecutionContext:
        """
        Create a fresh context.

        The execution id is the caller's session key and is never invented
        here: session-scoped caches and memory need a stable id across calls.
        """
        return ExecutionContext(
            payload=payload if payload is not None else {},
            memory=memory if memory is not None else {},
            vars=vars if vars is not None else {},
            services=self.services,
            user_id=user_id,
            node_id=node_id,
            node_type=node_type,
            workflow_id=workflow_id,
            execution_id=execution_id,
            abort_event=abort_event,
        )

    async def execute(
        self,
        node_type: str,
        context: ExecutionContext,
        config: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
        retry_count: Optional[int] = None,
        retry_backoff: Optional[float] = None,
    ) -> NodeResult:
        """
        Invoke the executor registered for node_type.

        Each attempt runs under a timeout. A retry result without an error is
        a suspension (the node waits for external input) and is returned at
        once. A retry result carrying an error, or an exception escaping an
        unguarded executor, is transient and re-invoked up to retry_count
        more times, sleeping retry_backoff * attempt seconds in between; when
        attempts run out the last result is returned.

        Args:
            node_type: Registered executor type id
            context: Execution context
            config: Node configuration
            timeout: Seconds per attempt (default: EXECUTOR_TIMEOUT)
            retry_count: Extra attempts on retry (default: EXECUTOR_RETRY_COUNT)
            retry_backoff: Backoff unit in seconds (default: EXECUTOR_RETRY_BACKOFF)

        Returns:
            NodeResult of the final attempt
        """
        fn = self.registry.get(node_type)
        if fn is None:
            logger.warning(f"No executor registered for node type '{node_type}'")
            return NodeResult.failure(
                f"Executor not found for node type: {node_type}",
                code="UNKNOWN_NODE_TYPE",
            )

        executor_settings = self.settings.executor
        timeout = timeout if timeout is not None else executor_settings.timeout
        retry_count = retry_count if retry_count is not None else executor_settings.retry_count
        retry_backoff = retry_backoff if retry_backoff is not None else executor_settings.retry_backoff

        context.node_type = context.node_type or node_type
        config = config or {}
        result: Optional[NodeResult] = None

        for attempt in range(retry_count + 1):
            raised = False
            try:
                async with asyncio.timeout(timeout):
                    result = await fn(context, config)
            except TimeoutError:
                logger.error(f"Node {context.node_id} ({node_type}) timed out after {timeout}s")
                return NodeResult.failure(
                    f"Node execution timed out after {timeout}s",
                    code="TIMEOUT",
                )
            except Exception as e:
                # Executors registered without the @executor boundary
                logger.error(f"Execution attempt {attempt + 1} of {node_type} failed: {e}")
                result = NodeResult.failure(str(e), code="EXEC_ERROR")
                raised = True

            if not raised and (result.status != NodeStatus.RETRY or result.error is None):
                return result

            if attempt < retry_count:
                delay = retry_backoff * (attempt + 1)
                logger.info(
                    f"Node {context.node_id} ({node_type}) asked to retry, "
                    f"attempt {attempt + 2}/{retry_count + 1} in {delay}s"
                )
                if delay > 0:
                    await asyncio.sleep(delay)

        if result is None:
            result = NodeResult.failure("Execution failed after all retry attempts", code="MAX_RETRIES")
        return result

    async def apply_memory_updates(self, result: NodeResult, context: ExecutionContext) -> None:
        """Merge result.updated_memory into the context and persist each key."""
        if not result.updated_memory:
            return
        context.memory.update(result.updated_memory)
        storage = self.services.storage
        if storage is None:
            return
        for key, value in result.updated_memory.items():
            await storage.set(key, value)

    async def run_node(
        self,
        fsm: FSM,
        node_id: str,
        context: ExecutionContext,
    ) -> tuple[NodeResult, Optional[str]]:
        """
        Execute one compiled node and work out where it routes.

        The executor type is the node's authored type and its configuration
        is node.config. A `runtime` mapping in the node data
        ({"timeoutMs": ..., "retry": {"count": ..., "backoffMs": ...}})
        overrides the dispatcher defaults for that node.

        Returns:
            (result, next node id or None)
        """
        node = fsm.nodes.get(node_id)
        if node is None:
            return NodeResult.failure(f"Node not found: {node_id}", code="UNKNOWN_NODE"), None

        context.node_id = node_id
        context.node_type = node.type

        runtime = node.data.get("runtime") if isinstance(node.data.get("runtime"), dict) else {}
        retry = runtime.get("retry") if isinstance(runtime.get("retry"), dict) else {}
        timeout = runtime["timeoutMs"] / 1000 if isinstance(runtime.get("timeoutMs"), (int, float)) else None
        retry_count = retry.get("count") if isinstance(retry.get("count"), int) else None
        backoff = retry["backoffMs"] / 1000 if isinstance(retry.get("backoffMs"), (int, float)) else None

        result = await self.execute(
            node.type or "",
            context,
            node.config,
            timeout=timeout,
            retry_count=retry_count,
            retry_backoff=backoff,
        )
        await self.apply_memory_updates(result, context)
        return result, resolve_next(fsm, node_id, result)

