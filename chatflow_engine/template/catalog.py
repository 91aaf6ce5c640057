"""
Named message template catalog.

Templates declare their variables up front; rendering substitutes each
declared {{name}} globally from a flat variable map (no path traversal).
"""

import logging
import re
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class MessageTemplate(BaseModel):
    """A named outbound message template."""

    id: str
    name: str
    body: str
    variables: list[str] = Field(default_factory=list)
    category: str = "notification"


DEFAULT_TEMPLATES: dict[str, MessageTemplate] = {
    t.id: t
    for t in (
        MessageTemplate(
            id="ALERT_MORTALITY",
            name="Mortality Alert",
            body=(
                "⚠️ ALERT: Mortalitas Tinggi pada {{farmName}} (Kandang {{shedId}})\n"
                "Tanggal: {{date}}\n"
                "Mortalitas: {{mortality}} ekor ({{mortality_pct}}%)\n"
                "Populasi Awal: {{population_start}} ekor\n"
                "Mohon PPL segera cek lapangan.\n"
                "Link QR Kandang: {{qrUrl}}"
            ),
            variables=["farmName", "shedId", "date", "mortality", "mortality_pct", "population_start", "qrUrl"],
            category="alert",
        ),
        MessageTemplate(
            id="HARVEST_SUMMARY",
            name="Harvest Summary Report",
            body=(
                "📦 Laporan Panen - {{farmName}}\n"
                "Siklus: {{cycleId}}\n"
                "Tanggal: {{harvestDate}}\n"
                "\n"
                "📊 Data Panen:\n"
                "• Jumlah: {{qty}} ekor\n"
                "• Berat Total: {{total_weight}} kg\n"
                "• Berat Rata-rata: {{avg_weight}} gr\n"
                "\n"
                "📈 Performance Siklus:\n"
                "• FCR: {{FCR}}\n"
                "• ADG: {{ADG}} gr/hari\n"
                "• Mortality: {{mortality_pct}}%\n"
                "\n"
                "Lihat laporan lengkap: {{pdfUrl}}"
            ),
            variables=[
                "farmName", "cycleId", "harvestDate", "qty", "total_weight",
                "avg_weight", "FCR", "ADG", "mortality_pct", "pdfUrl",
            ],
            category="report",
        ),
        MessageTemplate(
            id="QR_ASSIGNED",
            name="QR Code Assigned",
            body=(
                "✅ QR Code Kandang Assigned!\n"
                "\n"
                "Farm: {{farmName}}\n"
                "Kandang: {{shedId}}\n"
                "Link QR: {{qrUrl}}\n"
                "\n"
                "Scan QR code untuk check-in harian.\n"
                "Kamu bisa mulai input data mulai hari ini!"
            ),
            variables=["farmName", "shedId", "qrUrl"],
            category="notification",
        ),
        MessageTemplate(
            id="DAILY_CHECKIN_REMINDER",
            name="Daily Check-in Reminder",
            body=(
                "📅 Reminder: Waktunya Check-in Harian!\n"
                "\n"
                "Farm: {{farmName}}\n"
                "Kandang: {{shedId}}\n"
                "Tanggal: {{date}}\n"
                "\n"
                "Silakan input data:\n"
                "• Mortalitas (ekor)\n"
                "• Pakan (kg)\n"
                "• Berat rata-rata (gr)\n"
                "• Suhu (°C)\n"
                "\n"
                "Reply dengan format:\n"
                "INPUT <mortalitas> <pakan> <berat> <suhu>"
            ),
            variables=["farmName", "shedId", "date"],
            category="reminder",
        ),
        MessageTemplate(
            id="PERFORMANCE_UPDATE",
            name="Performance Update",
            body=(
                "📊 Update Performance Siklus {{cycleId}}\n"
                "\n"
                "Farm: {{farmName}}\n"
                "Tanggal: {{date}}\n"
                "\n"
                "📈 Metrics:\n"
                "• FCR: {{FCR}} (Target: < 1.6)\n"
                "• ADG: {{ADG}} gr/hari\n"
                "• Mortality: {{mortality_pct}}%\n"
                "\n"
                "Status: {{status}}"
            ),
            variables=["cycleId", "farmName", "date", "FCR", "ADG", "mortality_pct", "status"],
            category="update",
        ),
        MessageTemplate(
            id="FARM_REGISTERED",
            name="Farm Registration Confirmation",
            body=(
                "🏷️ Farm Berhasil Terdaftar!\n"
                "\n"
                "Nama Farm: {{farmName}}\n"
                "Peternak: {{owner}}\n"
                "Lokasi: {{location}}\n"
                "Kapasitas: {{capacity}} ekor\n"
                "Tanggal Mulai: {{start_date}}\n"
                "\n"
                "ID Farm: {{farmId}}\n"
                "Silakan simpan ID ini untuk keperluan selanjutnya."
            ),
            variables=["farmName", "owner", "location", "capacity", "start_date", "farmId"],
            category="confirmation",
        ),
    )
}


def render_catalog_template(
    template_id: str,
    variables: Optional[Mapping[str, Any]],
    catalog: Optional[Mapping[str, MessageTemplate]] = None,
) -> str:
    """
    Render a catalog template by id.

    Every declared variable is replaced globally; missing or None bindings
    render as ''. Unknown ids render as '' and log a warning.
    """
    templates = DEFAULT_TEMPLATES if catalog is None else catalog
    template = templates.get(str(template_id))
    if template is None:
        logger.warning(f"Template {template_id} not found")
        return ""

    variables = variables or {}
    rendered = template.body
    for name in template.variables:
        value = variables.get(name)
        text = "" if value is None else str(value)
        rendered = re.sub(r"\{\{" + re.escape(name) + r"\}\}", lambda _m: text, rendered)
    return rendered


def get_templates_by_category(
    category: str,
    catalog: Optional[Mapping[str, MessageTemplate]] = None,
) -> list[MessageTemplate]:
    """All templates in a category."""
    templates = DEFAULT_TEMPLATES if catalog is None else catalog
    return [t for t in templates.values() if t.category == category]
