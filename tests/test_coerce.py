"""Tests for the numeric and date coercers."""

from __future__ import annotations

import math
from datetime import date, datetime

import pandas as pd
import pytest

import po_ledger.coerce as coerce_mod
from po_ledger.coerce import MAX_SERIAL, parse_date, parse_numeric
from po_ledger.models import Diagnostics

# ── parse_numeric ────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("(1,234.50)", -1234.5),
        ("$2,000", 2000.0),
        ("", 0.0),
        (None, 0.0),
        ("  £1,500.25 ", 1500.25),
        ("€ 99", 99.0),
        ("₹12,00,000", 1200000.0),
        ("(500)", -500.0),
        ("-42.5", -42.5),
        ("100 USD", 100.0),
        ("1e3", 1000.0),
        (250, 250.0),
        (12.75, 12.75),
    ],
)
def test_parse_numeric_handles_currency_and_accounting_formats(raw: object, expected: float) -> None:
    assert parse_numeric(raw) == expected


@pytest.mark.parametrize(
    "raw",
    ["abc", "N/A", "—", "   ", object(), [1, 2], {"a": 1}, True, float("inf"), float("nan"), "1e999"],
)
def test_parse_numeric_is_total_and_finite(raw: object) -> None:
    diagnostics = Diagnostics()

    result = parse_numeric(raw, diagnostics)

    assert result == 0.0
    assert math.isfinite(result)
    assert diagnostics.count("coercion_fallback") == 1


def test_parse_numeric_blank_values_do_not_emit_diagnostics() -> None:
    diagnostics = Diagnostics()

    parse_numeric(None, diagnostics)
    parse_numeric("", diagnostics)

    assert len(diagnostics) == 0


def test_parse_numeric_fallback_diagnostic_carries_raw_value() -> None:
    diagnostics = Diagnostics()

    parse_numeric("twelve", diagnostics)

    record = diagnostics.records[0]
    assert record.severity == "warning"
    assert record.context["value"] == "'twelve'"
    assert "twelve" in record.message


# ── parse_date ───────────────────────────────────────────────────


def test_parse_date_iso_string_keeps_calendar_day() -> None:
    parsed = parse_date("2024-03-15")

    assert parsed is not None
    assert parsed.date() == date(2024, 3, 15)


def test_parse_date_invalid_string_returns_none_with_diagnostic() -> None:
    diagnostics = Diagnostics()

    assert parse_date("not a date", diagnostics) is None
    assert diagnostics.count("coercion_fallback") == 1


@pytest.mark.parametrize("raw", [None, "", 0])
def test_parse_date_falsy_values_are_none_without_diagnostics(raw: object) -> None:
    diagnostics = Diagnostics()

    assert parse_date(raw, diagnostics) is None
    assert len(diagnostics) == 0


def test_parse_date_passes_datetimes_through() -> None:
    value = datetime(2024, 5, 6, 7, 8, 9)

    assert parse_date(value) is value
    assert parse_date(date(2024, 5, 6)) == datetime(2024, 5, 6)


def test_parse_date_decodes_spreadsheet_serials() -> None:
    assert parse_date(45000) == datetime(2023, 3, 15)
    assert parse_date(45000.5) == datetime(2023, 3, 15, 12, 0, 0)


def test_parse_date_in_day_fraction_is_a_time_on_day_zero() -> None:
    assert parse_date(0.5) == datetime(1899, 12, 31, 12, 0, 0)
    assert parse_date(0.25) == datetime(1899, 12, 31, 6, 0, 0)


def test_parse_date_serial_times_round_to_whole_seconds() -> None:
    assert parse_date(45000 + 10.4 / 86400) == datetime(2023, 3, 15, 0, 0, 10)
    assert parse_date(45000 + 10.99995 / 86400) == datetime(2023, 3, 15, 0, 0, 11)


def test_parse_date_accepts_largest_serial() -> None:
    assert parse_date(MAX_SERIAL) == datetime(9999, 12, 31)


@pytest.mark.parametrize("raw", [-5, -0.5, MAX_SERIAL + 1, 1e12, float("nan"), float("inf")])
def test_parse_date_out_of_range_serial_returns_none_with_diagnostic(raw: float) -> None:
    diagnostics = Diagnostics()

    assert parse_date(raw, diagnostics) is None
    assert diagnostics.count("coercion_fallback") == 1


def test_parse_date_respects_dayfirst() -> None:
    assert parse_date("01/02/2024") == datetime(2024, 1, 2)
    assert parse_date("01/02/2024", dayfirst=True) == datetime(2024, 2, 1)


def test_parse_date_converts_aware_strings_to_naive_utc() -> None:
    assert parse_date("2024-03-15T10:30:00+02:00") == datetime(2024, 3, 15, 8, 30)


@pytest.mark.parametrize("raw", [[2024, 1, 1], {"y": 2024}, object(), True])
def test_parse_date_other_types_return_none(raw: object) -> None:
    diagnostics = Diagnostics()

    assert parse_date(raw, diagnostics) is None
    assert diagnostics.count("coercion_fallback") == 1


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("0001-01-01", datetime(1, 1, 1)), ("2300-06-01", datetime(2300, 6, 1))],
)
def test_parse_date_strings_outside_timestamp_range(raw: str, expected: datetime) -> None:
    assert parse_date(raw) == expected


def test_parse_date_out_of_bounds_strings_fall_back_to_dateutil(monkeypatch: pytest.MonkeyPatch) -> None:
    def _out_of_bounds(*_args: object, **_kwargs: object) -> None:
        raise pd.errors.OutOfBoundsDatetime("Out of bounds nanosecond timestamp")

    monkeypatch.setattr(coerce_mod.pd, "to_datetime", _out_of_bounds)
    diagnostics = Diagnostics()

    assert parse_date("2300-06-01", diagnostics) == datetime(2300, 6, 1)
    assert parse_date("02/03/2300", dayfirst=True) == datetime(2300, 3, 2)
    assert parse_date("not a date", diagnostics) is None
    assert diagnostics.count("coercion_fallback") == 1
