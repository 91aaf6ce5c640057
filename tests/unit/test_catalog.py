"""
Unit tests for the named message template catalog.
"""

from chatflow_engine.template.catalog import (
    DEFAULT_TEMPLATES,
    MessageTemplate,
    get_templates_by_category,
    render_catalog_template,
)


class TestCatalog:
    """Tests for catalog contents and rendering."""

    def test_default_templates(self):
        """Test the built-in catalog ids."""
        assert set(DEFAULT_TEMPLATES) == {
            "ALERT_MORTALITY",
            "HARVEST_SUMMARY",
            "QR_ASSIGNED",
            "DAILY_CHECKIN_REMINDER",
            "PERFORMANCE_UPDATE",
            "FARM_REGISTERED",
        }

    def test_render_substitutes_declared_variables(self):
        """Test declared variables are substituted everywhere."""
        rendered = render_catalog_template(
            "ALERT_MORTALITY",
            {
                "farmName": "Jaya",
                "shedId": "K2",
                "date": "2024-05-01",
                "mortality": 12,
                "mortality_pct": 1.2,
                "population_start": 1000,
                "qrUrl": "https://qr/k2",
            },
        )

        assert "Mortalitas Tinggi pada Jaya (Kandang K2)" in rendered
        assert "Mortalitas: 12 ekor (1.2%)" in rendered
        assert "{{" not in rendered

    def test_missing_variables_render_empty(self):
        """Test missing or None bindings become empty text."""
        rendered = render_catalog_template("QR_ASSIGNED", {"farmName": None})
        assert "Farm: \n" in rendered
        assert "{{" not in rendered

    def test_falsy_values_kept(self):
        """Test zero and False are rendered, not dropped."""
        rendered = render_catalog_template("FARM_REGISTERED", {"capacity": 0})
        assert "Kapasitas: 0 ekor" in rendered

    def test_unknown_template(self):
        """Test an unknown id renders as empty text."""
        assert render_catalog_template("NOPE", {"a": 1}) == ""

    def test_replacement_text_not_treated_as_pattern(self):
        """Test backslashes in values are inserted literally."""
        rendered = render_catalog_template("QR_ASSIGNED", {"shedId": r"K\1"})
        assert r"Kandang: K\1" in rendered

    def test_custom_catalog(self):
        """Test a caller-supplied catalog replaces the defaults."""
        catalog = {
            "HI": MessageTemplate(id="HI", name="Hi", body="Hi {{name}} {{other}}", variables=["name"]),
        }
        assert render_catalog_template("HI", {"name": "Budi", "other": "x"}, catalog) == "Hi Budi {{other}}"
        assert render_catalog_template("ALERT_MORTALITY", {}, catalog) == ""

    def test_templates_by_category(self):
        """Test category filtering."""
        alerts = get_templates_by_category("alert")
        assert [t.id for t in alerts] == ["ALERT_MORTALITY"]
        assert get_templates_by_category("missing") == []
