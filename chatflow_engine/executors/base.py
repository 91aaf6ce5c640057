"""
Executor contract.

An executor is an async function `(context, config) -> NodeResult`. The
@executor decorator registers it under a node type id and wraps it in an
exception boundary, so a crashing executor yields an error result instead of
taking down the session.
"""

import asyncio
import contextlib
import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from chatflow_engine.core.models import NodeResult
from chatflow_engine.services.container import Services

logger = logging.getLogger(__name__)

ExecutorFn = Callable[["ExecutionContext", dict[str, Any]], Awaitable[NodeResult]]


class ExecutionAborted(Exception):
    """Raised when the context's abort event fires while an executor waits."""

    code = "ABORTED"


@dataclass
class ExecutionContext:
    """
    Everything an executor may read.

    Services are explicit; an executor checks for the capability it needs
    and fails with a coded error when it is missing.
    """

    payload: dict[str, Any] = field(default_factory=dict)
    memory: dict[str, Any] = field(default_factory=dict)
    vars: dict[str, Any] = field(default_factory=dict)
    services: Services = field(default_factory=Services)
    user_id: Optional[str] = None
    node_id: Optional[str] = None
    node_type: Optional[str] = None
    workflow_id: Optional[str] = None
    execution_id: Optional[str] = None
    abort_event: Optional[asyncio.Event] = None

    @property
    def logger(self) -> logging.Logger:
        if self.node_type:
            return self.services.logger.getChild(self.node_type)
        return self.services.logger

    @property
    def session_id(self) -> Optional[str]:
        """Key for session-scoped state: the execution id, else the user id."""
        return self.execution_id or self.user_id or None

    @property
    def aborted(self) -> bool:
        return self.abort_event is not None and self.abort_event.is_set()

    def scope(self) -> dict[str, Any]:
        """Template scope with payload, memory and vars as top-level keys."""
        return {"payload": self.payload, "memory": self.memory, "vars": self.vars}

    async def run_abortable(self, awaitable: Awaitable[Any]) -> Any:
        """
        Await `awaitable` unless the abort event fires first.

        Raises:
            ExecutionAborted: If the abort event is (or becomes) set
        """
        if self.abort_event is None:
            return await awaitable
        if self.abort_event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise ExecutionAborted("Execution was aborted")

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.abort_event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (waiter, work):
                if not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

        if work in done:
            return work.result()
        raise ExecutionAborted("Execution was aborted")


class ExecutorRegistry:
    """Maps node type ids to executor functions."""

    def __init__(self):
        self._executors: dict[str, ExecutorFn] = {}

    def register(self, node_type: str, fn: ExecutorFn) -> None:
        if node_type in self._executors:
            logger.warning(f"Replacing executor registered for '{node_type}'")
        self._executors[node_type] = fn

    def get(self, node_type: Optional[str]) -> Optional[ExecutorFn]:
        if not node_type:
            return None
        return self._executors.get(node_type)

    def names(self) -> list[str]:
        return sorted(self._executors)

    def __contains__(self, node_type: object) -> bool:
        return node_type in self._executors

    def __len__(self) -> int:
        return len(self._executors)


default_registry = ExecutorRegistry()


def executor(node_type: str, registry: Optional[ExecutorRegistry] = None):
    """
    Register an executor and guard it with an exception boundary.

    Any exception other than cancellation becomes
    NodeResult(status="error", next="error"). The error code is taken from
    the exception's `code` attribute (service errors carry one), otherwise
    EXEC_ERROR.

    Args:
        node_type: Type id the executor handles, e.g. "process.calculate"
        registry: Registry to add it to (defaults to the module registry)
    """

    def decorator(fn: ExecutorFn) -> ExecutorFn:
        @functools.wraps(fn)
        async def guarded(context: ExecutionContext, config: dict[str, Any]) -> NodeResult:
            if context.node_type is None:
                context.node_type = node_type
            try:
                return await fn(context, config if isinstance(config, dict) else {})
            except Exception as e:
                context.logger.error(f"Executor {node_type} failed on node {context.node_id}: {e}")
                return NodeResult.failure(
                    str(e) or type(e).__name__,
                    code=getattr(e, "code", None) or "EXEC_ERROR",
                    details=getattr(e, "details", None),
                    next="error",
                )

        guarded.node_type = node_type
        (default_registry if registry is None else registry).register(node_type, guarded)
        return guarded

    return decorator
