"""Ingest report persistence."""

from __future__ import annotations

import json
from pathlib import Path

from po_ledger.io import write_json
from po_ledger.models import IngestReport

INGEST_REPORT_NAME = "ingest_report.json"


def write_ingest_report(out_dir: Path, report: IngestReport) -> Path:
    """Write ``ingest_report.json`` into *out_dir* and return the path."""
    return write_json(Path(out_dir) / INGEST_REPORT_NAME, report.to_dict())


def load_ingest_report(path: Path) -> IngestReport:
    """Read an ``ingest_report.json`` back into an :class:`IngestReport`.

    Raises ``FileNotFoundError`` when *path* is missing and ``ValueError``
    when its content is not a valid report.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Ingest report is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("Ingest report must be a JSON object")
    try:
        return IngestReport.from_dict(data)
    except (TypeError, AttributeError) as exc:
        raise ValueError(f"Invalid ingest report: {exc}") from exc
