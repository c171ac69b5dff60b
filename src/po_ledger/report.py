"""Excel report writer — produces PO_Report.xlsx."""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo
from openpyxl.worksheet.worksheet import Worksheet

from po_ledger.models import CanonicalRow, GroupedPo, IngestReport
from po_ledger.pipeline import groups_to_frame, rows_to_frame

REPORT_NAME = "PO_Report.xlsx"

# ── Styles ───────────────────────────────────────────────────────

_FONT = "Calibri"
HEADER_FONT = Font(name=_FONT, bold=True, color="FFFFFF")
HEADER_FILL = PatternFill("solid", start_color="1F4E78", end_color="1F4E78")
TITLE_FONT = Font(name=_FONT, bold=True, size=15, color="1F4E78")
MUTED_FONT = Font(name=_FONT, size=9, color="7F7F7F")
LABEL_FONT = Font(name=_FONT, bold=True)
VALUE_FONT = Font(name=_FONT)
WARN_FONT = Font(name=_FONT, italic=True, size=10, color="9C5700")
OVERSPEND_FONT = Font(name=_FONT, color="C00000")

NOTE_FILL = PatternFill("solid", start_color="FFEB9C", end_color="FFEB9C")
CARD_FILL = PatternFill("solid", start_color="DDEBF7", end_color="DDEBF7")

CURRENCY_FMT = '#,##0.00'
INT_FMT = '#,##0'
DATE_FMT = 'mm/dd/yyyy'

_COL_FORMATS: dict[str, str] = {
    "creation_date": DATE_FMT,
    "gr_date": DATE_FMT,
    "po_amount": CURRENCY_FMT,
    "invoice_amount": CURRENCY_FMT,
    "invoice_sum": CURRENCY_FMT,
    "amount_left": CURRENCY_FMT,
    "invoice_count": INT_FMT,
    "unique_pos": INT_FMT,
}

METRIC_FORMATS: dict[str, str] = {
    "Unique POs": INT_FMT,
    "Invoices GR'd": INT_FMT,
    "Total PO Amount": CURRENCY_FMT,
    "Total Amount Left": CURRENCY_FMT,
}

_DASHBOARD_WIDTH = 4
_MAX_DASHBOARD_WARNINGS = 20
_WIDTH_SAMPLE_ROWS = 250
_MAX_COLUMN_WIDTH = 32
# Leading characters that make Excel evaluate a text cell as a formula.
_FORMULA_PREFIXES = ("=", "+", "-", "@")


# ── Data sheets ──────────────────────────────────────────────────


def _cell_value(value: Any) -> Any:
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime().replace(tzinfo=None)
    if isinstance(value, str) and not value.startswith("'"):
        if value.lstrip()[:1] in _FORMULA_PREFIXES:
            return f"'{value}"
    return value


def _format_columns(ws: Worksheet, col_names: list[str]) -> None:
    for c_idx, name in enumerate(col_names, 1):
        fmt = _COL_FORMATS.get(name)
        if fmt is None or ws.max_row < 2:
            continue
        for (cell,) in ws.iter_rows(min_row=2, min_col=c_idx, max_col=c_idx):
            cell.number_format = fmt


def _fit_widths(ws: Worksheet) -> None:
    last = min(ws.max_row, _WIDTH_SAMPLE_ROWS + 1)
    for c_idx, column in enumerate(ws.iter_cols(min_row=1, max_row=last), 1):
        longest = max((len(str(cell.value)) for cell in column if cell.value is not None), default=0)
        ws.column_dimensions[get_column_letter(c_idx)].width = min(longest + 3, _MAX_COLUMN_WIDTH)


def _write_frame(wb: Workbook, title: str, df: pd.DataFrame) -> Worksheet:
    """Write *df* as a styled sheet; non-empty frames become an Excel table."""
    ws = wb.create_sheet(title=title)
    col_names = [str(c) for c in df.columns]
    ws.append(col_names)
    for values in df.itertuples(index=False, name=None):
        ws.append([_cell_value(v) for v in values])

    for cell in ws[1]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
    _format_columns(ws, col_names)
    _fit_widths(ws)
    ws.freeze_panes = "A2"

    if len(df) and col_names:
        table = Table(displayName=title, ref=f"A1:{get_column_letter(len(col_names))}{len(df) + 1}")
        table.tableStyleInfo = TableStyleInfo(name="TableStyleMedium2", showRowStripes=True)
        ws.add_table(table)
    return ws


def _mark_overspend(ws: Worksheet, col_names: list[str]) -> None:
    """Colour negative ``amount_left`` values red (over-invoiced POs)."""
    if "amount_left" not in col_names:
        return
    c_idx = col_names.index("amount_left") + 1
    for (cell,) in ws.iter_rows(min_row=2, min_col=c_idx, max_col=c_idx):
        if isinstance(cell.value, (int, float)) and cell.value < 0:
            cell.font = OVERSPEND_FONT


# ── Dashboard ────────────────────────────────────────────────────


def _band(ws: Worksheet, row: int, text: str, font: Font, fill: PatternFill) -> None:
    ws.cell(row=row, column=1, value=text).font = font
    for c in range(1, _DASHBOARD_WIDTH + 1):
        ws.cell(row=row, column=c).fill = fill


def _note_lines(report: IngestReport) -> list[tuple[str, Font]]:
    warnings = report.warnings
    if not warnings:
        return [("No warnings", VALUE_FONT)]
    lines = [(f"⚠ {w}", WARN_FONT) for w in warnings[:_MAX_DASHBOARD_WARNINGS]]
    hidden = len(warnings) - _MAX_DASHBOARD_WARNINGS
    if hidden > 0:
        lines.append((f"… and {hidden} more warnings", WARN_FONT))
    return lines


def _write_ingest_notes(ws: Worksheet, row: int, report: IngestReport) -> int:
    last_col = get_column_letter(_DASHBOARD_WIDTH)
    _band(ws, row, "Ingest notes", LABEL_FONT, NOTE_FILL)
    ws.merge_cells(f"A{row}:{last_col}{row}")
    row += 1
    counts = (
        f"Sheets: {report.sheets_in}",
        f"Rows in: {report.rows_in}",
        f"Rows out: {report.rows_out}",
        f"Dropped: {report.dropped_rows}",
    )
    for c_idx, text in enumerate(counts, 1):
        ws.cell(row=row, column=c_idx, value=text).fill = NOTE_FILL
    row += 1
    for text, font in _note_lines(report):
        _band(ws, row, text, font, NOTE_FILL)
        row += 1
    return row + 1


def _write_dashboard(wb: Workbook, metrics: dict[str, Any], report: IngestReport | None) -> None:
    ws = wb.create_sheet(title="Dashboard")
    last_col = get_column_letter(_DASHBOARD_WIDTH)

    ws["A1"] = "PO Ledger Dashboard"
    ws["A1"].font = TITLE_FONT
    ws["A2"] = f"Generated {datetime.now(timezone.utc):%Y-%m-%d %H:%M} UTC"
    ws["A2"].font = MUTED_FONT
    ws.merge_cells(f"A1:{last_col}1")
    ws.merge_cells(f"A2:{last_col}2")

    row = 4
    if report is not None:
        row = _write_ingest_notes(ws, row, report)
    _band(ws, row, "Key Metrics", LABEL_FONT, CARD_FILL)
    ws.merge_cells(f"A{row}:{last_col}{row}")
    row += 1

    ordered = [label for label in METRIC_FORMATS if label in metrics]
    ordered += sorted(label for label in metrics if label not in METRIC_FORMATS)
    for label in ordered:
        _band(ws, row, label, LABEL_FONT, CARD_FILL)
        value_cell = ws.cell(row=row, column=2, value=metrics[label])
        value_cell.font = VALUE_FONT
        value_cell.alignment = Alignment(horizontal="right")
        if label in METRIC_FORMATS:
            value_cell.number_format = METRIC_FORMATS[label]
        row += 1

    for c_idx, width in enumerate((26, 20, 16, 16), 1):
        ws.column_dimensions[get_column_letter(c_idx)].width = width


# ── Public API ───────────────────────────────────────────────────


def write_report(
    out_dir: Path,
    groups: Sequence[GroupedPo],
    rows: Sequence[CanonicalRow],
    metrics: dict[str, Any],
    marketers: pd.DataFrame,
    report: IngestReport | None = None,
) -> Path:
    """Write ``PO_Report.xlsx`` (Dashboard, POs, Marketers, Rows) and return its path.

    The Dashboard shows an "Ingest notes" band only when *report* is given.
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    wb = Workbook()
    wb.remove(wb.worksheets[0])
    _write_dashboard(wb, metrics, report)

    po_frame = groups_to_frame(groups)
    po_ws = _write_frame(wb, "POs", po_frame)
    _mark_overspend(po_ws, [str(c) for c in po_frame.columns])
    _write_frame(wb, "Marketers", marketers)
    _write_frame(wb, "Rows", rows_to_frame(rows))

    report_path = out_dir / REPORT_NAME
    tmp_path = out_dir / "PO_Report.tmp.xlsx"
    wb.save(tmp_path)
    tmp_path.replace(report_path)
    return report_path
