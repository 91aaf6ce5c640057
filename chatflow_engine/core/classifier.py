"""
Node classification.

Maps an authored node onto one of the canonical node kinds. An explicit
`kind` (set by the editor) always wins; untyped legacy graphs fall back to
ordered substring rules over the node type and label.
"""

from typing import Any, Mapping, NamedTuple, Optional

from chatflow_engine.core.models import NodeKind, RawNode


class ClassificationRule(NamedTuple):
    kind: NodeKind
    exact_types: tuple[str, ...]
    type_words: tuple[str, ...]
    label_words: tuple[str, ...]


# First match wins. start/end compare the type by equality so that types
# like "send" or "backend" never terminate a flow.
CLASSIFICATION_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(NodeKind.START, ("start",), (), ("start",)),
    ClassificationRule(NodeKind.END, ("end",), (), ("end",)),
    ClassificationRule(NodeKind.INPUT, (), ("ask", "input", "trigger"), ("ask", "input")),
    ClassificationRule(NodeKind.OUTPUT, (), ("send", "output"), ("send", "whatsapp", "message")),
    ClassificationRule(NodeKind.CONDITION, (), ("condition", "decision"), ("condition", "decision")),
    ClassificationRule(NodeKind.PROCESS, (), ("process", "ai", "calculate"), ("process", "calculate", "analysis")),
)

_KIND_VALUES = {kind.value: kind for kind in NodeKind}


def _field(node: Any, name: str) -> Any:
    if isinstance(node, RawNode):
        return getattr(node, name)
    if isinstance(node, Mapping):
        return node.get(name)
    return None


def node_data(node: Any) -> dict[str, Any]:
    data = _field(node, "data")
    return data if isinstance(data, dict) else {}


def node_label(node: Any) -> str:
    data = node_data(node)
    return str(data.get("label") or data.get("title") or "")


def explicit_kind(node: Any) -> Optional[NodeKind]:
    """Return the kind tagged at authoring time, if any."""
    tagged = node_data(node).get("kind")
    if tagged is None:
        tagged = node.get("kind") if isinstance(node, Mapping) else getattr(node, "kind", None)
    if isinstance(tagged, str):
        return _KIND_VALUES.get(tagged.strip().lower())
    return None


def classify_heuristic(node_type: str, label: str) -> NodeKind:
    """Classify from type and label text using the ordered substring rules."""
    t = (node_type or "").lower()
    lbl = (label or "").lower()

    for rule in CLASSIFICATION_RULES:
        if t in rule.exact_types:
            return rule.kind
        if any(word in t for word in rule.type_words):
            return rule.kind
        if any(word in lbl for word in rule.label_words):
            return rule.kind
    return NodeKind.UNKNOWN


def classify_node(node: Any) -> NodeKind:
    """
    Classify a raw node (dict or RawNode) into a NodeKind.

    Never raises; anything unrecognizable is UNKNOWN.
    """
    kind = explicit_kind(node)
    if kind is not None:
        return kind
    node_type = _field(node, "type")
    return classify_heuristic(
        node_type if isinstance(node_type, str) else "",
        node_label(node),
    )
