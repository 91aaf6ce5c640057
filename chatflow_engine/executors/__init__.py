"""
Node executors.

Importing this package registers every built-in executor in
default_registry.
"""

from chatflow_engine.executors import (  # noqa: F401
    ai,
    calculate,
    decision,
    farm,
    fetch,
    http_request,
    interaction,
    memory,
    messaging,
    records,
    sensor,
    validation,
    whatsapp,
)
from chatflow_engine.executors.base import (
    ExecutionAborted,
    ExecutionContext,
    ExecutorRegistry,
    default_registry,
    executor,
)
from chatflow_engine.executors.dispatch import NodeDispatcher, resolve_next
from chatflow_engine.executors.expression import (
    ExpressionError,
    UnsafeExpressionError,
    evaluate,
    evaluate_arithmetic,
)

__all__ = [
    "ExecutionAborted",
    "ExecutionContext",
    "ExecutorRegistry",
    "default_registry",
    "executor",
    "NodeDispatcher",
    "resolve_next",
    "ExpressionError",
    "UnsafeExpressionError",
    "evaluate",
    "evaluate_arithmetic",
]
