"""
Unit tests for template resolution and free-text parsing.
"""

import pytest

from chatflow_engine.template.resolver import (
    TemplateResolver,
    coerce_number,
    get_by_path,
    normalize_key,
    parse_key_value_line,
    render_path_template,
    split_path,
    to_text,
)


class TestTemplateResolver:
    """Tests for TemplateResolver."""

    @pytest.fixture
    def scope(self) -> dict:
        return {
            "nama": "Budi",
            "nama_lengkap": "Budi Santoso",
            "payload": {"user": {"name": "Sari", "tags": ["a", "b"]}},
            "items": [{"id": 1}, {"id": 2}],
            "count": 3.0,
            "active": True,
        }

    def test_find_references(self):
        """Test finding template references in a string."""
        resolver = TemplateResolver()
        refs = resolver.find_references("Hello {{ user.name }}, your ID is {{ user.id }}")

        assert len(refs) == 2
        assert refs[0].path == "user.name"
        assert refs[1].path == "user.id"

    def test_render_simple(self, scope):
        """Test rendering a top-level variable."""
        assert TemplateResolver(scope).render("Halo {{nama}}") == "Halo Budi"

    def test_render_nested_and_indexed(self, scope):
        """Test dotted paths and list indexes."""
        resolver = TemplateResolver(scope)

        assert resolver.render("{{ payload.user.name }}") == "Sari"
        assert resolver.render("{{ items[1].id }}") == "2"
        assert resolver.render("{{ items.0.id }}") == "1"
        assert resolver.render("{{ payload.user.tags.1 }}") == "b"

    def test_render_missing_is_empty(self, scope):
        """Test unresolvable paths render as empty text."""
        assert TemplateResolver(scope).render("Hi {{ ghost.name }}!") == "Hi !"

    def test_render_keep_missing(self, scope):
        """Test keep_missing leaves unresolved placeholders in place."""
        rendered = TemplateResolver(scope).render("{{nama}} {{ ghost }}", keep_missing=True)
        assert rendered == "Budi {{ ghost }}"

    def test_render_normalized_lookup(self, scope):
        """Test a free-text key finds its normalized variable."""
        assert TemplateResolver(scope).render("{{ Nama Lengkap }}") == "Budi Santoso"

    def test_render_formats_values(self, scope):
        """Test whole floats and booleans render naturally."""
        assert TemplateResolver(scope).render("{{count}} {{active}}") == "3 true"

    def test_render_none_template(self):
        """Test a None template renders as empty text."""
        assert TemplateResolver({}).render(None) == ""

    def test_no_attribute_access(self):
        """Test objects other than dicts and lists are not navigated."""

        class Secret:
            token = "hidden"

        assert TemplateResolver({"obj": Secret()}).render("{{ obj.token }}") == ""
        assert TemplateResolver({"s": "text"}).render("{{ s.__class__ }}") == ""

    def test_resolve_single_reference_keeps_type(self, scope):
        """Test a lone reference resolves to the raw value."""
        resolver = TemplateResolver(scope)

        assert resolver.resolve("{{ items }}") == [{"id": 1}, {"id": 2}]
        assert resolver.resolve({"n": "{{count}}", "l": ["x {{nama}}"]}) == {"n": 3.0, "l": ["x Budi"]}

    def test_render_path_template(self):
        """Test the module-level helper never raises on odd input."""
        assert render_path_template("a {{b}}", None) == "a "
        assert render_path_template(42, {}) == "42"


class TestPaths:
    """Tests for path helpers."""

    def test_split_path(self):
        assert split_path("items[0].id") == ["items", 0, "id"]
        assert split_path("a.b") == ["a", "b"]

    def test_get_by_path_misses(self):
        """Test misses return None."""
        data = {"a": [1, 2]}
        assert get_by_path(data, "a.5") is None
        assert get_by_path(data, "a.x") is None
        assert get_by_path(data, "") is None
        assert get_by_path(data, None) is None

    def test_to_text(self):
        assert to_text(None) == ""
        assert to_text(False) == "false"
        assert to_text(2.0) == "2"
        assert to_text(2.5) == "2.5"


class TestKeyValueParsing:
    """Tests for 'key: value' free-text parsing."""

    def test_parse_pairs(self):
        """Test keys are normalized and numbers coerced."""
        result = parse_key_value_line("Nama Farm: Jaya, Populasi: 1000, Berat: 1.75")
        assert result == {"nama_farm": "Jaya", "populasi": 1000, "berat": 1.75}

    def test_segments_without_colon_skipped(self):
        assert parse_key_value_line("halo, nama: Budi") == {"nama": "Budi"}

    def test_value_with_colon(self):
        """Test only the first colon splits key and value."""
        assert parse_key_value_line("jam: 10:30") == {"jam": "10:30"}

    def test_empty_value_kept(self):
        assert parse_key_value_line("catatan: , nama: x") == {"catatan": "", "nama": "x"}

    def test_empty_text(self):
        assert parse_key_value_line("") == {}
        assert parse_key_value_line(None) == {}

    def test_normalize_key(self):
        assert normalize_key("  Nama   Lengkap ") == "nama_lengkap"

    def test_coerce_number(self):
        assert coerce_number("42") == 42
        assert coerce_number("-1.5") == -1.5
        assert coerce_number("1e3") == 1000.0
        assert coerce_number("08123") == 8123
        assert coerce_number("abc") == "abc"
