"""Value coercers — total functions from raw cells to typed values.

Neither function raises: unparseable input falls back to a safe default
(``0.0`` / ``None``) and a ``coercion_fallback`` diagnostic is recorded.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta, timezone

import pandas as pd
from dateutil import parser as dateparser
from openpyxl.utils.datetime import from_excel

from po_ledger.models import Diagnostics

_CURRENCY_RE = re.compile(r"[$€£₹,]")
_ACCOUNTING_NEGATIVE_RE = re.compile(r"^\((.*)\)$")
# Longest leading float literal, e.g. "100 USD" -> "100", "1e3x" -> "1e3".
_LEADING_FLOAT_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

# Largest serial a spreadsheet can hold (9999-12-31).
MAX_SERIAL = 2958465
# Serial 0 is the day before 1900-01-01.
_SERIAL_DAY_ZERO = datetime(1899, 12, 31)


def _fallback(diagnostics: Diagnostics | None, message: str, value: object) -> None:
    if diagnostics is not None:
        diagnostics.warn("coercion_fallback", message, value=repr(value))


# ── Numbers ──────────────────────────────────────────────────────


def _normalize_numeric_token(token: str) -> str:
    token = _CURRENCY_RE.sub("", token).strip()
    return _ACCOUNTING_NEGATIVE_RE.sub(r"-\1", token)


def parse_numeric(value: object, diagnostics: Diagnostics | None = None) -> float:
    """Coerce a cell to a finite float.

    Currency symbols and thousands commas are stripped, and accounting
    negatives like ``(1,000)`` become ``-1000``.
    """
    if value is None or (isinstance(value, str) and value == ""):
        return 0.0

    if isinstance(value, bool):
        _fallback(diagnostics, f"Unexpected bool for numeric parsing ({value!r}); coerced to 0", value)
        return 0.0

    if isinstance(value, (int, float)):
        result = float(value)
        if not math.isfinite(result):
            _fallback(diagnostics, f"Non-finite numeric value {value!r}; coerced to 0", value)
            return 0.0
        return result

    if isinstance(value, str):
        token = _normalize_numeric_token(value)
        match = _LEADING_FLOAT_RE.match(token)
        if match is None:
            _fallback(diagnostics, f"Could not parse numeric value {value!r}; coerced to 0", value)
            return 0.0
        result = float(match.group(0))
        if not math.isfinite(result):
            _fallback(diagnostics, f"Numeric value {value!r} overflows; coerced to 0", value)
            return 0.0
        return result

    _fallback(
        diagnostics,
        f"Unexpected type for numeric parsing: {type(value).__name__} ({value!r}); coerced to 0",
        value,
    )
    return 0.0


# ── Dates ────────────────────────────────────────────────────────


def _from_serial(value: float) -> datetime | None:
    if not math.isfinite(value) or value < 0 or value > MAX_SERIAL:
        return None
    days = int(value)
    # whole seconds; a sub-second remainder above 0.9999 carries into the next second
    seconds = math.floor((value - days) * 86400 + 1e-4)
    try:
        base = _SERIAL_DAY_ZERO if days == 0 else from_excel(days)
        return base + timedelta(seconds=seconds)
    except (OverflowError, ValueError):
        return None


def _from_text(value: str, *, dayfirst: bool) -> datetime | None:
    text = value.strip()
    try:
        parsed = pd.to_datetime(text, dayfirst=dayfirst)
    except pd.errors.OutOfBoundsDatetime:
        # outside the nanosecond Timestamp range of older pandas releases
        try:
            parsed = dateparser.parse(text, dayfirst=dayfirst)
        except (ValueError, OverflowError):
            return None
    except (ValueError, TypeError, OverflowError):
        return None
    if parsed is None or pd.isna(parsed):
        return None
    result = parsed.to_pydatetime() if isinstance(parsed, pd.Timestamp) else parsed
    if result.tzinfo is not None:
        result = result.astimezone(timezone.utc).replace(tzinfo=None)
    return result


def parse_date(
    value: object,
    diagnostics: Diagnostics | None = None,
    *,
    dayfirst: bool = False,
) -> datetime | None:
    """Coerce a cell to a naive ``datetime``.

    Numbers are spreadsheet serial dates (1900 date system, 0 to
    ``MAX_SERIAL``, rounded to whole seconds); strings go through
    ``pandas.to_datetime``.
    """
    if value is None or value is pd.NaT or (isinstance(value, (str, int, float)) and not value):
        return None

    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    if isinstance(value, bool):
        _fallback(diagnostics, f"Could not parse date value {value!r}", value)
        return None

    if isinstance(value, (int, float)):
        decoded = _from_serial(value)
        if decoded is None:
            _fallback(diagnostics, f"Failed to parse spreadsheet serial date {value!r}", value)
        return decoded

    if isinstance(value, str):
        parsed = _from_text(value, dayfirst=dayfirst)
        if parsed is None:
            _fallback(diagnostics, f"Could not parse date value {value!r}", value)
        return parsed

    _fallback(diagnostics, f"Could not parse date value {value!r}", value)
    return None
