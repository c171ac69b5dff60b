"""Header matching and header-row detection."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from functools import lru_cache
from types import MappingProxyType
from typing import Any

from po_ledger.models import Cell, Diagnostics, HeaderDetection, Sheet
from po_ledger.synonyms import HEADER_SYNONYMS, MAX_HEADER_SEARCH_ROWS

# '#' is kept so that "Vendor" and "Vendor#" stay distinct.
_HEADER_STRIP_RE = re.compile(r"[^a-z0-9#]")

_PREVIEW_ROWS = 3


def normalize_header(header: object) -> str:
    if header is None:
        return ""
    return _HEADER_STRIP_RE.sub("", str(header).lower())


class HeaderMatcher:
    """Immutable lookup from normalised header text to canonical field name.

    Synonyms that collide after normalisation resolve to the field registered
    last.
    """

    def __init__(self, synonyms: Mapping[str, Iterable[str]]) -> None:
        table: dict[str, str] = {}
        for field_name, spellings in synonyms.items():
            for spelling in spellings:
                key = normalize_header(spelling)
                if key:
                    table[key] = field_name
        self._table = MappingProxyType(table)

    def resolve(self, header: object) -> str | None:
        return self._table.get(normalize_header(header))

    def __contains__(self, header: object) -> bool:
        return normalize_header(header) in self._table

    def __len__(self) -> int:
        return len(self._table)

    @property
    def table(self) -> Mapping[str, str]:
        return self._table


@lru_cache(maxsize=1)
def default_matcher() -> HeaderMatcher:
    """Return the shared matcher for the built-in synonym table."""
    return HeaderMatcher(HEADER_SYNONYMS)


def _cell_text(cell: Cell) -> str:
    return "" if cell is None else str(cell)


def detect_header_row(
    grid: Sequence[Sequence[Cell]],
    matcher: HeaderMatcher | None = None,
    max_rows: int = MAX_HEADER_SEARCH_ROWS,
    diagnostics: Diagnostics | None = None,
) -> HeaderDetection:
    """Pick the row among the first *max_rows* with the most known headers.

    Ties go to the earliest row. When no row matches anything, row 0 is used
    and a ``header_not_detected`` warning is emitted.
    """
    matcher = matcher or default_matcher()
    if max_rows < 1:
        raise ValueError("max_rows must be >= 1")

    best_index = 0
    best_score = 0
    best_headers = [_cell_text(c) for c in grid[0]] if grid else []

    for row_index, row in enumerate(grid[:max_rows]):
        headers = [_cell_text(c) for c in row]
        score = sum(1 for h in headers if h in matcher)
        if score > best_score:
            best_index, best_score, best_headers = row_index, score, headers

    if best_score == 0 and diagnostics is not None:
        diagnostics.warn(
            "header_not_detected",
            "Could not detect a header row with known synonyms; defaulting to the first row",
            scanned_rows=min(max_rows, len(grid)),
        )

    return HeaderDetection(header_row_index=best_index, headers=best_headers, score=best_score)


def map_headers(headers: Sequence[str], matcher: HeaderMatcher | None = None) -> list[str | None]:
    """Resolve every header position to a canonical field (or ``None``)."""
    matcher = matcher or default_matcher()
    return [matcher.resolve(h) for h in headers]


def preview_header_detection(
    sheet: Sheet,
    matcher: HeaderMatcher | None = None,
    max_rows: int = MAX_HEADER_SEARCH_ROWS,
) -> dict[str, Any]:
    """Return the detected header row of *sheet* plus a short data preview."""
    matcher = matcher or default_matcher()
    detection = detect_header_row(sheet.rows, matcher, max_rows=max_rows)
    start = detection.header_row_index + 1
    return {
        "sheet": sheet.name,
        "header_row_index": detection.header_row_index,
        "headers": list(detection.headers),
        "mapped_headers": {h: matcher.resolve(h) for h in detection.headers},
        "preview_rows": [list(row) for row in sheet.rows[start : start + _PREVIEW_ROWS]],
    }
