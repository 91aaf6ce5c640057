"""
Workflow graph compilation.

Builds a finite-state machine from authored nodes and edges, selects the start
state and flags authored cycles. Compilation tolerates malformed and partial
graphs: it never raises for bad input, it only reports issues.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from chatflow_engine.core.classifier import classify_node
from chatflow_engine.core.models import (
    FSM,
    FSMEdge,
    FSMNode,
    NodeKind,
    RawEdge,
    RawNode,
    WorkflowGraph,
)

logger = logging.getLogger(__name__)


class GraphCompileError(Exception):
    """Raised only when strict compilation rejects a graph."""

    def __init__(self, message: str, cycle_nodes: Optional[list[str]] = None):
        self.cycle_nodes = cycle_nodes or []
        super().__init__(message)


@dataclass
class ValidationIssue:
    """Represents a single compile-time finding."""

    code: str
    message: str
    node_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationResult:
    """Findings for a compiled FSM. Authored graphs only ever produce warnings."""

    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.warnings

    def add_warning(
        self,
        code: str,
        message: str,
        node_id: Optional[str] = None,
        **details: Any,
    ) -> None:
        """Add a validation warning."""
        self.warnings.append(ValidationIssue(code, message, node_id, details))

    def codes(self) -> list[str]:
        return [w.code for w in self.warnings]


def _as_raw_nodes(nodes: Iterable[Any]) -> list[RawNode]:
    result = []
    for node in nodes or []:
        try:
            raw = node if isinstance(node, RawNode) else RawNode.model_validate(node)
        except PydanticValidationError:
            logger.debug(f"Skipping malformed node: {node!r}")
            continue
        if not raw.id:
            logger.debug("Skipping node without id")
            continue
        result.append(raw)
    return result


def _as_raw_edges(edges: Iterable[Any]) -> list[RawEdge]:
    result = []
    for edge in edges or []:
        try:
            raw = edge if isinstance(edge, RawEdge) else RawEdge.model_validate(edge)
        except PydanticValidationError:
            logger.debug(f"Skipping malformed edge: {edge!r}")
            continue
        if not raw.source or not raw.target:
            continue
        result.append(raw)
    return result


def find_cycle_nodes(node_ids: Iterable[str], edges_from: dict[str, list[FSMEdge]]) -> list[str]:
    """
    Find nodes on directed cycles, i.e. on the tree path closed by each DFS
    back edge.

    Iterative DFS with an explicit stack so deep graphs cannot hit the
    recursion limit. Returned in first-discovery order.
    """
    WHITE, GREY, BLACK = 0, 1, 2
    color: dict[str, int] = {}
    on_cycle: dict[str, None] = {}

    for root in node_ids:
        if color.get(root, WHITE) != WHITE:
            continue
        path: list[str] = [root]
        color[root] = GREY
        stack = [(root, iter(e.to for e in edges_from.get(root, [])))]

        while stack:
            node, neighbors = stack[-1]
            advanced = False
            for neighbor in neighbors:
                state = color.get(neighbor, WHITE)
                if state == WHITE:
                    color[neighbor] = GREY
                    path.append(neighbor)
                    stack.append((neighbor, iter(e.to for e in edges_from.get(neighbor, []))))
                    advanced = True
                    break
                if state == GREY:
                    # Back edge: every node from neighbor to the top of path is on a cycle
                    for member in path[path.index(neighbor):]:
                        on_cycle.setdefault(member, None)
            if not advanced:
                stack.pop()
                path.pop()
                color[node] = BLACK

    return list(on_cycle)


def select_start(raw_nodes: list[RawNode], kinds: dict[str, NodeKind], raw_edges: list[RawEdge]) -> Optional[str]:
    """
    Pick the start state.

    Order: first start-kind node, first input-kind node, first node with no
    incoming edge, first node. None for an empty graph.
    """
    if not raw_nodes:
        return None

    for wanted in (NodeKind.START, NodeKind.INPUT):
        for node in raw_nodes:
            if kinds[node.id] == wanted:
                return node.id

    incoming = {edge.target for edge in raw_edges}
    for node in raw_nodes:
        if node.id not in incoming:
            return node.id

    return raw_nodes[0].id


def compile_workflow(nodes: Iterable[Any], edges: Iterable[Any], reject_cycles: bool = False) -> FSM:
    """
    Compile authored nodes and edges into an FSM.

    Args:
        nodes: Raw node dicts (or RawNode) with id, type, data
        edges: Raw edge dicts (or RawEdge) with source, target, label, data.condition
        reject_cycles: Raise GraphCompileError instead of only flagging cycles

    Returns:
        FSM with classified nodes, outgoing edges in authoring order and a start id
    """
    raw_nodes = _as_raw_nodes(nodes)
    raw_edges = _as_raw_edges(edges)

    fsm_nodes: dict[str, FSMNode] = {}
    kinds: dict[str, NodeKind] = {}
    for raw in raw_nodes:
        if raw.id in fsm_nodes:
            logger.warning(f"Duplicate node id '{raw.id}', keeping the last definition")
        kind = classify_node(raw)
        kinds[raw.id] = kind
        fsm_nodes[raw.id] = FSMNode(
            id=raw.id,
            label=str(raw.data.get("label") or raw.data.get("title") or raw.type or raw.id),
            kind=kind,
            type=raw.type,
            data=raw.data,
        )

    edges_from: dict[str, list[FSMEdge]] = {}
    for raw in raw_edges:
        edges_from.setdefault(raw.source, []).append(
            FSMEdge(
                from_id=raw.source,
                to=raw.target,
                label=raw.label,
                condition=raw.condition,
            )
        )

    cyclic = [n for n in find_cycle_nodes(fsm_nodes.keys(), edges_from) if n in fsm_nodes]
    if cyclic:
        if reject_cycles:
            raise GraphCompileError(f"Workflow contains cycles involving nodes: {cyclic}", cyclic)
        logger.warning(f"Workflow contains cycles involving nodes: {cyclic}")

    start_id = select_start(raw_nodes, kinds, raw_edges)

    return FSM(
        nodes=fsm_nodes,
        edges_from=edges_from,
        start_id=start_id,
        cyclic_nodes=cyclic,
    )


def compile_graph(graph: WorkflowGraph | dict, reject_cycles: bool = False) -> FSM:
    """Compile a WorkflowGraph (or its dict form)."""
    if isinstance(graph, dict):
        graph = WorkflowGraph.model_validate(graph)
    return compile_workflow(graph.nodes, graph.edges, reject_cycles=reject_cycles)


def validate_fsm(fsm: FSM) -> ValidationResult:
    """
    Report structural findings for a compiled FSM.

    Nothing here blocks execution; the interpreter tolerates every finding.
    """
    result = ValidationResult()

    if fsm.start_id is None:
        result.add_warning(code="NO_START", message="Workflow has no nodes to start from")
        return result

    for source, edges in fsm.edges_from.items():
        if source not in fsm.nodes:
            result.add_warning(
                code="DANGLING_EDGE",
                message=f"Edge source '{source}' does not exist",
                node_id=source,
            )
        for edge in edges:
            if edge.to not in fsm.nodes:
                result.add_warning(
                    code="DANGLING_EDGE",
                    message=f"Edge '{source}' -> '{edge.to}' points to a missing node",
                    node_id=source,
                    target=edge.to,
                )

    for node in fsm.nodes.values():
        if node.kind == NodeKind.CONDITION and not fsm.outgoing(node.id):
            result.add_warning(
                code="CONDITION_WITHOUT_BRANCHES",
                message=f"Condition node '{node.id}' has no outgoing branches",
                node_id=node.id,
            )

    # BFS from the start node
    reachable = {fsm.start_id}
    queue = deque([fsm.start_id])
    while queue:
        node_id = queue.popleft()
        for edge in fsm.outgoing(node_id):
            if edge.to in fsm.nodes and edge.to not in reachable:
                reachable.add(edge.to)
                queue.append(edge.to)

    unreachable = [node_id for node_id in fsm.nodes if node_id not in reachable]
    if unreachable:
        result.add_warning(
            code="UNREACHABLE_NODES",
            message=f"Nodes {unreachable} are not reachable from the start node",
            unreachable_nodes=unreachable,
        )

    if fsm.cyclic_nodes:
        result.add_warning(
            code="CYCLE_DETECTED",
            message=f"Workflow contains cycles involving nodes: {fsm.cyclic_nodes}",
            cycle_nodes=list(fsm.cyclic_nodes),
        )

    return result
