"""
XML request templates for the Tally HTTP API.

Templates are Jinja2 files that render the export envelopes sent to Tally.
Rendering is pure: no I/O beyond reading the bundled template files.
"""
from __future__ import annotations
from datetime import date
from pathlib import Path
from typing import Optional
from jinja2 import Environment, FileSystemLoader, StrictUndefined

from ..config import TallySnapshotConfig

# Template directory
TEMPLATE_DIR = Path(__file__).parent

# Available templates
TEMPLATES = {
    "probe": "probe.xml.j2",
    "masters": "masters.xml.j2",
    "vouchers_range": "vouchers_range.xml.j2",
    "vouchers_since": "vouchers_since.xml.j2",
}


def get_template_path(name: str) -> Path:
    """Get path to a template file."""
    if name not in TEMPLATES:
        raise ValueError(f"Unknown template: {name}. Valid: {list(TEMPLATES.keys())}")
    return TEMPLATE_DIR / TEMPLATES[name]


def tally_date(d: date) -> str:
    """Format a date the way SVFROMDATE / SVTODATE expect it (YYYYMMDD)."""
    return d.strftime("%Y%m%d")


class RequestBuilder:
    """
    Builds the four request payloads used by the sync engine.

    Usage:
        builder = RequestBuilder(config)
        builder.probe()
        builder.masters()
        builder.vouchers_for_range(date(2024, 4, 1), date(2024, 4, 30))
        builder.vouchers_since(1520)
    """

    def __init__(self, config: Optional[TallySnapshotConfig] = None):
        self.config = config or TallySnapshotConfig.from_env()
        self.env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=True,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    def _render(self, name: str, **context) -> str:
        template = self.env.get_template(TEMPLATES[name])
        return template.render(
            company=self.config.tally_company,
            export_format=self.config.export_format_tag,
            **context,
        )

    def probe(self) -> str:
        """Connectivity probe: lists companies loaded in Tally."""
        return self._render("probe")

    def masters(self) -> str:
        """Full export of groups and ledgers."""
        return self._render("masters")

    def vouchers_for_range(self, from_date: date, to_date: date) -> str:
        """All vouchers dated within [from_date, to_date]."""
        if from_date > to_date:
            raise ValueError(f"from_date {from_date} is after to_date {to_date}")
        return self._render(
            "vouchers_range",
            from_date=tally_date(from_date),
            to_date=tally_date(to_date),
        )

    def vouchers_since(self, alter_id: int) -> str:
        """Vouchers whose AlterId is greater than the given watermark."""
        if alter_id < 0:
            raise ValueError(f"alter_id must not be negative: {alter_id}")
        return self._render("vouchers_since", alter_id=int(alter_id))
