"""
Sandboxed template resolution.

Resolves {{ path.to.value }} placeholders against a variable scope without
eval/exec. Unresolvable paths render as an empty string and never raise.
"""

import re
from dataclasses import dataclass
from typing import Any, Optional

# Pattern to match {{ reference }}
TEMPLATE_PATTERN = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")

_WHITESPACE = re.compile(r"\s+")
_INDEX_SEGMENT = re.compile(r"^([^\[\]]*)\[(\d+)\]$")
_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")


def normalize_key(key: Any) -> str:
    """Normalize a free-text key: trimmed, lower-case, whitespace runs to '_'."""
    return _WHITESPACE.sub("_", str(key).strip()).lower()


def coerce_number(raw: str) -> Any:
    """Return int/float for numeric-looking text, otherwise the text unchanged."""
    text = raw.strip()
    if not _NUMBER.match(text):
        return raw
    number = float(text)
    if number.is_integer() and "." not in text and "e" not in text.lower():
        return int(text)
    return number


def split_path(path: str) -> list[Any]:
    """
    Split a dotted path into navigation segments.

    Examples:
        "user.name" -> ["user", "name"]
        "items[0].id" -> ["items", 0, "id"]
        "rows.2" -> ["rows", "2"]  (digit keys also index lists)
    """
    segments: list[Any] = []
    for part in str(path).strip().split("."):
        match = _INDEX_SEGMENT.match(part)
        if match:
            if match.group(1):
                segments.append(match.group(1))
            segments.append(int(match.group(2)))
        else:
            segments.append(part)
    return segments


def navigate(value: Any, segments: list[Any]) -> Any:
    """
    Navigate dicts and lists only.

    No attribute access: objects other than dict/list stop navigation, so
    templates can never reach methods or private attributes.
    """
    current = value
    for key in segments:
        if current is None:
            return None
        if isinstance(current, list):
            if isinstance(key, str) and key.isdigit():
                key = int(key)
            if isinstance(key, int) and 0 <= key < len(current):
                current = current[key]
            else:
                return None
        elif isinstance(current, dict):
            if isinstance(key, int):
                key = str(key)
            current = current.get(key)
        else:
            return None
    return current


def get_by_path(obj: Any, path: Optional[str]) -> Any:
    """Resolve a dotted path against nested dicts/lists, None on any miss."""
    if path is None or str(path).strip() == "":
        return None
    return navigate(obj, split_path(path))


def to_text(value: Any) -> str:
    """Render a resolved value for embedding in text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass
class TemplateReference:
    """Represents a parsed template reference."""

    full_match: str
    path: str
    start_pos: int
    end_pos: int


class TemplateResolver:
    """
    Resolves template expressions against a scope.

    Supports:
    - {{ name }} - top-level variable
    - {{ payload.user.name }} - nested dict access
    - {{ items[0].id }} / {{ items.0.id }} - list indexing

    Lookup tries the path verbatim, then with each segment normalized, so
    {{ Nama Lengkap }} finds a variable captured as "nama_lengkap".
    """

    def __init__(self, scope: Optional[dict[str, Any]] = None):
        self.scope = scope or {}

    def find_references(self, template: str) -> list[TemplateReference]:
        """Find all template references in a string."""
        return [
            TemplateReference(
                full_match=match.group(0),
                path=match.group(1).strip(),
                start_pos=match.start(),
                end_pos=match.end(),
            )
            for match in TEMPLATE_PATTERN.finditer(template)
        ]

    def lookup(self, path: str) -> Any:
        value = get_by_path(self.scope, path)
        if value is None:
            normalized = ".".join(normalize_key(part) for part in path.split("."))
            if normalized != path:
                value = get_by_path(self.scope, normalized)
        return value

    def render(self, template: Any, keep_missing: bool = False) -> str:
        """
        Substitute every reference in a string.

        Missing values become '', or stay as the literal placeholder when
        keep_missing is set.
        """
        if template is None:
            return ""
        text = str(template)
        references = self.find_references(text)
        if not references:
            return text

        result = text
        for ref in reversed(references):  # Reverse to maintain positions
            value = self.lookup(ref.path)
            if value is None and keep_missing:
                continue
            result = result[:ref.start_pos] + to_text(value) + result[ref.end_pos:]
        return result

    def resolve(self, template: Any) -> Any:
        """
        Resolve templates recursively in strings, dicts and lists.

        A string consisting of a single reference resolves to the raw value,
        preserving its type.
        """
        if isinstance(template, str):
            references = self.find_references(template)
            if len(references) == 1 and references[0].full_match == template.strip():
                return self.lookup(references[0].path)
            return self.render(template)
        if isinstance(template, dict):
            return {k: self.resolve(v) for k, v in template.items()}
        if isinstance(template, list):
            return [self.resolve(v) for v in template]
        return template


def render_path_template(text: Any, scope: Optional[dict[str, Any]], keep_missing: bool = False) -> str:
    """Render {{ dotted.path }} placeholders against scope. Never raises."""
    return TemplateResolver(scope).render(text, keep_missing=keep_missing)


def parse_key_value_line(text: Optional[str]) -> dict[str, Any]:
    """
    Parse "key: value, key2: value2" free text into a variable mapping.

    Keys are normalized, numeric-looking values become numbers, segments
    without a colon are skipped and values may themselves contain colons.
    """
    result: dict[str, Any] = {}
    if not text:
        return result

    for part in str(text).split(","):
        part = part.strip()
        if not part or ":" not in part:
            continue
        key, _, raw_value = part.partition(":")
        key = normalize_key(key)
        if not key:
            continue
        value = raw_value.strip()
        result[key] = coerce_number(value) if value else value
    return result
