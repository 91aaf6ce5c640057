"""Core domain models, graph compilation and interpretation."""

from chatflow_engine.core.classifier import classify_node
from chatflow_engine.core.compiler import (
    GraphCompileError,
    ValidationResult,
    compile_graph,
    compile_workflow,
    validate_fsm,
)
from chatflow_engine.core.interpreter import FSMInterpreter, step_fsm
from chatflow_engine.core.models import (
    FSM,
    FSMEdge,
    FSMNode,
    HaltReason,
    NodeError,
    NodeKind,
    NodeResult,
    NodeStatus,
    StepResult,
    WorkflowGraph,
)

__all__ = [
    "classify_node",
    "GraphCompileError",
    "ValidationResult",
    "compile_graph",
    "compile_workflow",
    "validate_fsm",
    "FSMInterpreter",
    "step_fsm",
    "FSM",
    "FSMEdge",
    "FSMNode",
    "HaltReason",
    "NodeError",
    "NodeKind",
    "NodeResult",
    "NodeStatus",
    "StepResult",
    "WorkflowGraph",
]
