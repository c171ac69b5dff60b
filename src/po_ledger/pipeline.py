"""Ingestion + aggregation pipeline — pure functions over sheets and rows."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, datetime, time
from typing import Any

import pandas as pd

from po_ledger.coerce import parse_date, parse_numeric
from po_ledger.headers import HeaderMatcher, default_matcher, detect_header_row, map_headers
from po_ledger.io import read_workbook
from po_ledger.models import CanonicalRow, Cell, Diagnostics, GroupedPo, IngestReport, Sheet
from po_ledger.synonyms import MAX_HEADER_SEARCH_ROWS

logger = logging.getLogger(__name__)

TEAM_SEPARATOR = " / "

# ── Sheet normalisation ─────────────────────────────────────────


def _is_blank_row(row: Sequence[Cell]) -> bool:
    return all(cell is None or cell == "" for cell in row)


def _text(value: Cell, default: str = "") -> str:
    if not value:
        return default.strip()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value).strip()


def _raw_record(row: Sequence[Cell], header_map: Sequence[str | None]) -> dict[str, Cell]:
    record: dict[str, Cell] = {}
    for index, field_name in enumerate(header_map):
        if field_name is not None:
            record[field_name] = row[index] if index < len(row) else None
    return record


def normalize_sheet(
    sheet: Sheet,
    matcher: HeaderMatcher | None = None,
    diagnostics: Diagnostics | None = None,
    *,
    max_header_rows: int = MAX_HEADER_SEARCH_ROWS,
    dayfirst: bool = False,
) -> list[CanonicalRow]:
    """Turn one sheet's raw grid into canonical rows, in source order.

    Rows without a PO number or a parseable creation date are dropped with a
    ``row_skipped`` diagnostic. ``team_name`` is always the sheet name.
    """
    matcher = matcher or default_matcher()
    diagnostics = diagnostics if diagnostics is not None else Diagnostics(logger)
    team_name = sheet.name.strip()

    detection = detect_header_row(sheet.rows, matcher, max_header_rows, diagnostics)
    header_map = map_headers(detection.headers, matcher)

    out: list[CanonicalRow] = []
    data_rows = sheet.rows[detection.header_row_index + 1 :]
    for offset, row in enumerate(data_rows):
        if _is_blank_row(row):
            continue
        # 1-based row number as shown by spreadsheet applications
        row_number = detection.header_row_index + offset + 2
        raw = _raw_record(row, header_map)

        creation_date = parse_date(raw.get("creationDate"), diagnostics, dayfirst=dayfirst)
        po_number = _text(raw.get("poNumber"))
        if not po_number or creation_date is None:
            missing = [] if po_number else ["poNumber"]
            if creation_date is None:
                missing.append("creationDate")
            diagnostics.warn(
                "row_skipped",
                f"Skipping row {row_number} of sheet {sheet.name!r}: "
                f"missing or invalid {', '.join(missing)}",
                sheet=sheet.name,
                row=row_number,
                fields=missing,
            )
            continue

        out.append(
            CanonicalRow(
                po_number=po_number,
                creation_date=creation_date,
                marketer_name=_text(raw.get("marketerName")),
                vendor_name=_text(raw.get("vendorName")),
                team_name=team_name,
                po_amount=parse_numeric(raw.get("poAmount"), diagnostics),
                invoice_number=_text(raw.get("invoiceNumber")),
                invoice_amount=parse_numeric(raw.get("invoiceAmount"), diagnostics),
                gr_date=parse_date(raw.get("grDate"), diagnostics, dayfirst=dayfirst),
                status=_text(raw.get("status"), default="N/A"),
            )
        )

    diagnostics.info(
        "sheet_processed",
        f"Processed sheet {sheet.name!r}: {len(data_rows)} data rows, {len(out)} kept",
        sheet=sheet.name,
        header_row_index=detection.header_row_index,
        data_rows=len(data_rows),
        rows_out=len(out),
    )
    return out


# ── Workbook ingestion ──────────────────────────────────────────


def ingest_workbook(
    source: bytes | Sequence[Sheet],
    matcher: HeaderMatcher | None = None,
    *,
    max_header_rows: int = MAX_HEADER_SEARCH_ROWS,
    dayfirst: bool = False,
) -> tuple[list[CanonicalRow], IngestReport]:
    """Normalise every non-empty sheet of *source* and concatenate the rows.

    *source* is raw ``.xlsx``/``.xls`` bytes or already-decoded sheets.
    Returns ``(rows, report)``; an empty result is reported through
    ``report.is_empty`` rather than raised.

    Raises
    ------
    DecodeError
        If *source* is bytes that cannot be decoded as a workbook.
    """
    sheets = read_workbook(source) if isinstance(source, (bytes, bytearray)) else list(source)
    matcher = matcher or default_matcher()
    diagnostics = Diagnostics(logger)
    logger.info("Processing workbook sheets: %s", [s.name for s in sheets])

    rows: list[CanonicalRow] = []
    for sheet in sheets:
        if sheet.is_empty:
            continue
        rows.extend(
            normalize_sheet(
                sheet,
                matcher,
                diagnostics,
                max_header_rows=max_header_rows,
                dayfirst=dayfirst,
            )
        )

    skipped = diagnostics.count("row_skipped")
    report = IngestReport(
        sheets_in=len(sheets),
        rows_in=len(rows) + skipped,
        rows_out=len(rows),
        dropped_rows=skipped,
        diagnostics=list(diagnostics),
    )
    logger.info("Finished processing. Total normalized rows: %d", len(rows))
    return rows, report


# ── PO aggregation ──────────────────────────────────────────────


def _majority_team(rows: Sequence[CanonicalRow]) -> str:
    counts: dict[str, int] = {}
    for row in rows:
        counts[row.team_name] = counts.get(row.team_name, 0) + 1
    top = max(counts.values())
    return TEAM_SEPARATOR.join(team for team, count in counts.items() if count == top)


def aggregate_pos(rows: Sequence[CanonicalRow]) -> list[GroupedPo]:
    """Group *rows* by PO number (first-seen order) and compute aggregates.

    ``amount_left`` is not clamped: a negative value means over-invoicing.
    """
    buckets: dict[str, list[CanonicalRow]] = {}
    for row in rows:
        buckets.setdefault(row.po_number, []).append(row)

    groups: list[GroupedPo] = []
    for po_number, members in buckets.items():
        first = members[0]
        po_amount = max(r.po_amount for r in members)
        invoice_sum = sum(r.invoice_amount for r in members)
        groups.append(
            GroupedPo(
                po_number=po_number,
                creation_date=first.creation_date,
                marketer_name=first.marketer_name,
                vendor_name=first.vendor_name,
                team_name=_majority_team(members),
                po_amount=po_amount,
                invoice_sum=invoice_sum,
                amount_left=po_amount - invoice_sum,
                rows=tuple(members),
            )
        )
    return groups


# ── Dashboard helpers ───────────────────────────────────────────


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time())


def _marketer_fragments(marketers: str | Sequence[str] | None) -> list[str]:
    if not marketers:
        return []
    parts = marketers.split(",") if isinstance(marketers, str) else list(marketers)
    return [p.strip().lower() for p in parts if p.strip()]


def filter_rows(
    rows: Sequence[CanonicalRow],
    *,
    start_date: date | datetime | None = None,
    marketers: str | Sequence[str] | None = None,
    status: str = "All",
) -> list[CanonicalRow]:
    """Apply the dashboard filters: start date, marketer fragments, status."""
    start = _as_datetime(start_date) if start_date is not None else None
    fragments = _marketer_fragments(marketers)
    wanted_status = status.strip().lower()

    kept: list[CanonicalRow] = []
    for row in rows:
        if start is not None and row.creation_date < start:
            continue
        if fragments and not any(f in row.marketer_name.lower() for f in fragments):
            continue
        if wanted_status != "all" and row.status.lower() != wanted_status:
            continue
        kept.append(row)
    return kept


def earliest_creation_date(rows: Sequence[CanonicalRow]) -> datetime | None:
    return min((r.creation_date for r in rows), default=None)


def search_groups(groups: Sequence[GroupedPo], query: str | None) -> list[GroupedPo]:
    """Keep groups whose identity fields or invoice numbers contain *query*."""
    needle = (query or "").strip().lower()
    if not needle:
        return list(groups)

    def _matches(po: GroupedPo) -> bool:
        fields = (po.po_number, po.marketer_name, po.vendor_name, po.team_name)
        if any(needle in f.lower() for f in fields):
            return True
        return any(needle in r.invoice_number.lower() for r in po.rows)

    return [po for po in groups if _matches(po)]


SORT_KEYS: dict[str, str] = {
    "poNumber": "po_number",
    "creationDate": "creation_date",
    "marketerName": "marketer_name",
    "vendorName": "vendor_name",
    "teamName": "team_name",
    "poAmount": "po_amount",
    "invoiceSum": "invoice_sum",
    "amountLeft": "amount_left",
}


def sort_groups(
    groups: Sequence[GroupedPo], key: str, *, descending: bool = False
) -> list[GroupedPo]:
    """Sort by a GroupedPo field (snake_case or camelCase); ``None`` sorts last."""
    attr = SORT_KEYS.get(key, key)
    if attr not in SORT_KEYS.values():
        raise ValueError(f"Unknown sort key: {key!r}. Use one of: {', '.join(SORT_KEYS)}")

    present = [po for po in groups if getattr(po, attr) is not None]
    missing = [po for po in groups if getattr(po, attr) is None]

    def _sort_value(po: GroupedPo) -> Any:
        value = getattr(po, attr)
        return value.casefold() if isinstance(value, str) else value

    return sorted(present, key=_sort_value, reverse=descending) + missing


def compute_po_metrics(
    rows: Sequence[CanonicalRow], groups: Sequence[GroupedPo]
) -> dict[str, Any]:
    """Return the headline metrics for the dashboard."""
    return {
        "Unique POs": len({r.po_number for r in rows}),
        "Invoices GR'd": sum(1 for r in rows if r.gr_date is not None),
        "Total PO Amount": round(float(sum(po.po_amount for po in groups)), 2),
        "Total Amount Left": round(float(sum(po.amount_left for po in groups)), 2),
    }


def compute_marketer_po_counts(rows: Sequence[CanonicalRow]) -> pd.DataFrame:
    """Distinct PO numbers per marketer, in first-seen marketer order."""
    if not rows:
        return pd.DataFrame(columns=["marketer", "unique_pos"])
    df = pd.DataFrame(
        {"marketer": [r.marketer_name for r in rows], "po_number": [r.po_number for r in rows]}
    )
    return (
        df.groupby("marketer", sort=False, as_index=False)
        .agg(unique_pos=("po_number", "nunique"))
        .reset_index(drop=True)
    )


GROUP_COLUMNS: list[str] = [
    "po_number",
    "creation_date",
    "marketer_name",
    "vendor_name",
    "team_name",
    "po_amount",
    "invoice_sum",
    "amount_left",
    "invoice_count",
]

ROW_COLUMNS: list[str] = [
    "po_number",
    "creation_date",
    "marketer_name",
    "vendor_name",
    "team_name",
    "po_amount",
    "invoice_number",
    "invoice_amount",
    "gr_date",
    "status",
]


def groups_to_frame(groups: Sequence[GroupedPo]) -> pd.DataFrame:
    records = [
        {
            **{col: getattr(po, col) for col in GROUP_COLUMNS if col != "invoice_count"},
            "invoice_count": sum(1 for r in po.rows if r.invoice_number),
        }
        for po in groups
    ]
    return pd.DataFrame.from_records(records, columns=GROUP_COLUMNS)


def rows_to_frame(rows: Sequence[CanonicalRow]) -> pd.DataFrame:
    records = [{col: getattr(r, col) for col in ROW_COLUMNS} for r in rows]
    return pd.DataFrame.from_records(records, columns=ROW_COLUMNS)
