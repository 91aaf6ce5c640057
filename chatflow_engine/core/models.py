"""
Domain models for the chatflow engine.

Authored graphs arrive from an external editor with free-form, untrusted
fields, so the raw models coerce rather than reject. Compiled and runtime
models are strict.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NodeKind(str, Enum):
    """Canonical conversational role of a graph node."""

    START = "start"
    END = "end"
    INPUT = "input"
    OUTPUT = "output"
    PROCESS = "process"
    CONDITION = "condition"
    UNKNOWN = "unknown"


def _coerce_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    if isinstance(v, (str, int, float)) and not isinstance(v, bool):
        return str(v)
    return None


def _coerce_dict(v: Any) -> dict[str, Any]:
    return v if isinstance(v, dict) else {}


# ==================== Authored Graph ====================


class RawNode(BaseModel):
    """A node as produced by the graph editor."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = Field(default=None, description="Node identifier")
    type: Optional[str] = Field(default=None, description="Free-form node type")
    data: dict[str, Any] = Field(default_factory=dict, description="Free-form node data")

    @field_validator("id", "type", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Optional[str]:
        return _coerce_str(v)

    @field_validator("data", mode="before")
    @classmethod
    def coerce_data(cls, v: Any) -> dict[str, Any]:
        return _coerce_dict(v)


class RawEdge(BaseModel):
    """An edge as produced by the graph editor."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = Field(default=None)
    source: Optional[str] = Field(default=None, description="Source node id")
    target: Optional[str] = Field(default=None, description="Target node id")
    label: Optional[str] = Field(default=None, description="Branch label")
    data: dict[str, Any] = Field(default_factory=dict, description="Edge data; data.condition is honored")

    @field_validator("id", "source", "target", "label", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Optional[str]:
        return _coerce_str(v)

    @field_validator("data", mode="before")
    @classmethod
    def coerce_data(cls, v: Any) -> dict[str, Any]:
        return _coerce_dict(v)

    @property
    def condition(self) -> Optional[str]:
        return _coerce_str(self.data.get("condition"))


class WorkflowGraph(BaseModel):
    """Nodes and edges of an authored workflow."""

    nodes: list[RawNode] = Field(default_factory=list)
    edges: list[RawEdge] = Field(default_factory=list)

    @field_validator("nodes", "edges", mode="before")
    @classmethod
    def drop_non_objects(cls, v: Any) -> list:
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, (dict, BaseModel))]


# ==================== Compiled FSM ====================


class FSMNode(BaseModel):
    """A classified node of the compiled state machine."""

    id: str
    label: str
    kind: NodeKind
    type: Optional[str] = Field(default=None, description="Authored node type, also the executor type id")
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def config(self) -> dict[str, Any]:
        """Executor configuration: data.config when present, otherwise data itself."""
        config = self.data.get("config")
        return config if isinstance(config, dict) else self.data


class FSMEdge(BaseModel):
    """An outgoing transition. Serialized with the key "from"."""

    model_config = ConfigDict(populate_by_name=True)

    from_id: str = Field(..., alias="from")
    to: str
    label: Optional[str] = None
    condition: Optional[str] = None

    @property
    def branch_name(self) -> Optional[str]:
        """Condition text if present, otherwise the label."""
        return self.condition or self.label or None


class FSM(BaseModel):
    """Compiled, stateless adjacency representation of a workflow."""

    nodes: dict[str, FSMNode] = Field(default_factory=dict)
    edges_from: dict[str, list[FSMEdge]] = Field(default_factory=dict)
    start_id: Optional[str] = None
    cyclic_nodes: list[str] = Field(default_factory=list, description="Nodes that sit on an authored cycle")

    def outgoing(self, node_id: str) -> list[FSMEdge]:
        """Outgoing edges of a node in authoring order."""
        return self.edges_from.get(node_id, [])

    def first_target(self, node_id: str) -> Optional[str]:
        edges = self.outgoing(node_id)
        return edges[0].to if edges else None


# ==================== Interpreter Results ====================


class HaltReason(str, Enum):
    """Why a call to the interpreter stopped walking."""

    AWAITING_INPUT = "awaiting_input"
    END = "end"
    DEAD_END = "dead_end"
    MISSING_NODE = "missing_node"
    VISIT_LIMIT = "visit_limit"
    EMPTY = "empty"


class StepResult(BaseModel):
    """Outcome of one conversational turn."""

    outputs: list[str] = Field(default_factory=list)
    awaiting_input: bool = False
    next_state_id: Optional[str] = None
    variables: dict[str, Any] = Field(default_factory=dict)
    halt_reason: HaltReason = HaltReason.DEAD_END


# ==================== Executor Results ====================


class NodeStatus(str, Enum):
    """Executor outcome."""

    SUCCESS = "success"
    ERROR = "error"
    RETRY = "retry"


class NodeError(BaseModel):
    """Error details attached to an error or retry result."""

    message: str
    code: Optional[str] = None
    details: Any = None


class NodeResult(BaseModel):
    """
    Uniform executor result.

    `next` names the outgoing branch the dispatcher should follow. A retry
    status means "do not advance, re-invoke this node later".
    """

    status: NodeStatus
    data: Any = None
    error: Optional[NodeError] = None
    next: Optional[str] = None
    updated_memory: Optional[dict[str, Any]] = None

    @classmethod
    def success(cls, data: Any = None, next: Optional[str] = "default", **kwargs: Any) -> "NodeResult":
        return cls(status=NodeStatus.SUCCESS, data=data, next=next, **kwargs)

    @classmethod
    def failure(
        cls,
        message: str,
        code: Optional[str] = None,
        details: Any = None,
        next: Optional[str] = None,
    ) -> "NodeResult":
        return cls(
            status=NodeStatus.ERROR,
            error=NodeError(message=message, code=code, details=details),
            next=next,
        )

    @classmethod
    def retry(cls, error: Optional[NodeError] = None) -> "NodeResult":
        return cls(status=NodeStatus.RETRY, error=error)

    @property
    def is_success(self) -> bool:
        return self.status == NodeStatus.SUCCESS
