"""Template rendering and free-text parsing."""

from chatflow_engine.template.catalog import (
    DEFAULT_TEMPLATES,
    MessageTemplate,
    get_templates_by_category,
    render_catalog_template,
)
from chatflow_engine.template.resolver import (
    TemplateResolver,
    get_by_path,
    normalize_key,
    parse_key_value_line,
    render_path_template,
    to_text,
)

__all__ = [
    "DEFAULT_TEMPLATES",
    "MessageTemplate",
    "get_templates_by_category",
    "render_catalog_template",
    "TemplateResolver",
    "get_by_path",
    "normalize_key",
    "parse_key_value_line",
    "render_path_template",
    "to_text",
]
