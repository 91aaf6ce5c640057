"""
Turn-by-turn FSM interpreter.

One call walks the compiled FSM from the caller's current state until it
needs fresh user input, reaches an end node, runs out of edges, or exceeds
the per-turn visit bound. The walk is synchronous and side-effect free; the
caller persists (next_state_id, variables) between turns and must serialize
calls per conversation.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from chatflow_engine.config import get_settings
from chatflow_engine.config.settings import Settings
from chatflow_engine.core.models import FSM, FSMEdge, FSMNode, HaltReason, NodeKind, StepResult
from chatflow_engine.template.catalog import render_catalog_template
from chatflow_engine.template.resolver import normalize_key, parse_key_value_line, render_path_template

logger = logging.getLogger(__name__)

# Free text that looks like "key: value, key2: value2"
KV_SHAPE = re.compile(r":.*,")

YES_INPUTS = frozenset({"ya", "iya", "yes", "y", "1", "true"})
YES_BRANCHES = frozenset({"yes", "ya", "iya", "true", "1"})


@dataclass
class _Walk:
    """Mutable state of a single interpreter call."""

    cursor: Optional[str]
    user_input: Optional[str]
    variables: dict[str, Any]
    max_visits: int
    outputs: list[str] = field(default_factory=list)
    visits: dict[str, int] = field(default_factory=dict)

    def enter(self, node_id: str) -> bool:
        """Count a visit; False once the node exceeds the bound."""
        count = self.visits.get(node_id, 0) + 1
        self.visits[node_id] = count
        return count <= self.max_visits


class FSMInterpreter:
    """
    Stateless interpreter for compiled workflows.

    Transition rules per node kind:
    - output: render text, emit it, follow the first edge
    - process: silent (unless data.debug), follow the first edge
    - input: prompt and wait; on input bind variables and follow the first edge
    - condition: prompt with branch labels and wait (or auto-route); on input
      pick the matching branch
    - end: emit the end message and stop
    - start/unknown: follow the first edge
    """

    def __init__(
        self,
        max_visits: int = 3,
        end_message: str = "Workflow selesai.",
        default_input_prompt: str = "Masukkan data",
        default_choice_prompt: str = "Pilih opsi",
    ):
        if max_visits < 1:
            raise ValueError("max_visits must be >= 1")
        self.max_visits = max_visits
        self.end_message = end_message
        self.default_input_prompt = default_input_prompt
        self.default_choice_prompt = default_choice_prompt

    @classmethod
    def from_settings(
        cls,
        max_visits: Optional[int] = None,
        settings: Optional[Settings] = None,
    ) -> "FSMInterpreter":
        settings = (settings or get_settings()).interpreter
        return cls(
            max_visits=max_visits or settings.max_visits,
            end_message=settings.end_message,
            default_input_prompt=settings.default_input_prompt,
            default_choice_prompt=settings.default_choice_prompt,
        )

    def step(
        self,
        fsm: FSM,
        current_state_id: Optional[str],
        user_input: Optional[str],
        variables: Optional[dict[str, Any]] = None,
    ) -> StepResult:
        """
        Advance the conversation by one turn.

        Args:
            fsm: Compiled workflow
            current_state_id: State persisted from the previous turn, None to start
            user_input: Fresh user text for this turn, None if there is none
            variables: Variable scope persisted from the previous turn

        Returns:
            StepResult with emitted outputs, the state to persist and a halt reason
        """
        walk = _Walk(
            cursor=current_state_id or fsm.start_id,
            user_input=user_input,
            variables=dict(variables or {}),
            max_visits=self.max_visits,
        )

        if not walk.cursor:
            return self._halt(walk, HaltReason.EMPTY)

        if not walk.enter(walk.cursor):
            return self._visit_limit(walk)

        while walk.cursor:
            node = fsm.nodes.get(walk.cursor)
            if node is None:
                logger.warning(f"State '{walk.cursor}' does not exist in the workflow")
                return self._halt(walk, HaltReason.MISSING_NODE)

            if node.kind == NodeKind.END:
                walk.outputs.append(self.end_message)
                return self._halt(walk, HaltReason.END)

            if node.kind == NodeKind.INPUT:
                if walk.user_input is None:
                    walk.outputs.append(self._input_prompt(node))
                    return self._halt(walk, HaltReason.AWAITING_INPUT, awaiting_input=True)
                walk.variables.update(self._bind_input(node, walk.user_input))
                walk.user_input = None
                target = fsm.first_target(node.id) or node.id

            elif node.kind == NodeKind.CONDITION:
                edges = fsm.outgoing(node.id)
                if walk.user_input is None:
                    if node.data.get("auto") is True or node.data.get("autoRoute") is True:
                        target = edges[0].to if edges else node.id
                    else:
                        walk.outputs.append(self._choice_prompt(node, edges))
                        return self._halt(walk, HaltReason.AWAITING_INPUT, awaiting_input=True)
                else:
                    target = self.choose_branch(edges, walk.user_input) or node.id
                    walk.user_input = None

            else:
                if node.kind == NodeKind.OUTPUT:
                    walk.outputs.append(self._render_output(node, walk.variables))
                elif node.kind == NodeKind.PROCESS and node.data.get("debug") is True:
                    walk.outputs.append(f"Processing: {node.data.get('label') or node.label or 'Processing'}")
                target = fsm.first_target(node.id)
                if target is None:
                    return self._halt(walk, HaltReason.DEAD_END)

            walk.cursor = target
            if not walk.enter(target):
                return self._visit_limit(walk)

        return self._halt(walk, HaltReason.DEAD_END)

    # ==================== Node Handling ====================

    def _input_prompt(self, node: FSMNode) -> str:
        return str(node.data.get("prompt") or node.data.get("title") or node.label or self.default_input_prompt)

    def _bind_input(self, node: FSMNode, text: str) -> dict[str, Any]:
        """Turn free-text input into variable updates."""
        if node.data.get("parse") == "kv" or KV_SHAPE.search(text):
            return parse_key_value_line(text)
        key = (
            node.data.get("fieldKey")
            or node.data.get("label")
            or node.data.get("title")
            or f"input_{node.id}"
        )
        return {normalize_key(key): text}

    def _choice_prompt(self, node: FSMNode, edges: list[FSMEdge]) -> str:
        question = str(node.data.get("prompt") or node.data.get("title") or node.label or self.default_choice_prompt)
        labels = [edge.branch_name for edge in edges if edge.branch_name]
        if labels:
            return f"{question} ({' / '.join(labels)})"
        return question

    @staticmethod
    def choose_branch(edges: list[FSMEdge], user_input: str) -> Optional[str]:
        """
        Pick the branch target for a condition answer.

        Exact case-insensitive match on condition/label first, then yes-words
        map onto a yes-labelled branch, then the first branch.
        """
        if not edges:
            return None
        answer = user_input.strip().lower()

        for edge in edges:
            if (edge.branch_name or "").lower() == answer:
                return edge.to

        if answer in YES_INPUTS:
            for edge in edges:
                if (edge.branch_name or "").lower() in YES_BRANCHES:
                    return edge.to

        return edges[0].to

    def _render_output(self, node: FSMNode, variables: dict[str, Any]) -> str:
        raw = node.data.get("text") or node.data.get("title") or node.label
        template_id = node.data.get("templateId")
        if template_id:
            rendered = render_catalog_template(str(template_id), variables)
            raw = rendered or raw
        return render_path_template(raw, variables)

    # ==================== Results ====================

    def _visit_limit(self, walk: _Walk) -> StepResult:
        logger.warning(
            f"Visit limit of {self.max_visits} exceeded at node '{walk.cursor}'; "
            "stopping this turn"
        )
        return self._halt(walk, HaltReason.VISIT_LIMIT)

    @staticmethod
    def _halt(
        walk: _Walk,
        reason: HaltReason,
        awaiting_input: bool = False,
    ) -> StepResult:
        return StepResult(
            outputs=walk.outputs,
            awaiting_input=awaiting_input,
            next_state_id=walk.cursor or None,
            variables=walk.variables,
            halt_reason=reason,
        )


def step_fsm(
    fsm: FSM,
    current_state_id: Optional[str],
    user_input: Optional[str],
    variables: Optional[dict[str, Any]] = None,
    *,
    max_visits: Optional[int] = None,
) -> StepResult:
    """Advance one turn with an interpreter configured from settings."""
    return FSMInterpreter.from_settings(max_visits=max_visits).step(
        fsm, current_state_id, user_input, variables
    )
