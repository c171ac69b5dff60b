"""Tests for workbook decoding, snapshot persistence and CSV export."""

from __future__ import annotations

import io
import json
from datetime import date, datetime, time
from pathlib import Path

import pandas as pd
import pytest
from openpyxl import Workbook

from po_ledger.io import (
    CSV_HEADERS,
    DecodeError,
    clear_snapshot,
    export_csv,
    format_csv,
    format_display_date,
    load_snapshot,
    load_workbook,
    read_workbook,
    save_snapshot,
    to_cell,
    write_json,
)
from po_ledger.models import CanonicalRow
from po_ledger.pipeline import aggregate_pos
from po_ledger.synonyms import SNAPSHOT_KEY

_OLE2 = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 32


def _rows() -> list[CanonicalRow]:
    return [
        CanonicalRow(
            po_number="PO1",
            creation_date=datetime(2024, 1, 5),
            marketer_name="Alice",
            vendor_name="Acme",
            team_name="Team A",
            po_amount=100.0,
            invoice_number="INV-1",
            invoice_amount=150.0,
            gr_date=datetime(2024, 1, 9, 14, 30),
            status="Open",
        ),
        CanonicalRow(po_number="PO2", creation_date=datetime(2024, 2, 1), po_amount=12.5),
    ]


# ── to_cell ──────────────────────────────────────────────────────


def test_to_cell_narrows_reader_values() -> None:
    assert to_cell(None) is None
    assert to_cell("") is None
    assert to_cell(pd.NaT) is None
    assert to_cell(float("nan")) is None
    assert to_cell("PO1") == "PO1"
    assert to_cell(7) == 7
    assert to_cell(2.5) == 2.5
    assert to_cell(True) == "TRUE"
    assert to_cell(False) == "FALSE"
    assert to_cell(pd.Timestamp("2024-01-02 03:04")) == datetime(2024, 1, 2, 3, 4)
    assert to_cell(date(2024, 1, 2)) == datetime(2024, 1, 2)
    assert to_cell(time(9, 30)) == "09:30:00"
    assert to_cell(Path("x")) == "x"


def test_to_cell_unwraps_numpy_scalars() -> None:
    series = pd.Series([5, 2.5])

    assert to_cell(series.astype("int64").iloc[0]) == 5
    assert type(to_cell(series.astype("int64").iloc[0])) is int
    assert to_cell(series.iloc[1]) == 2.5


# ── read_workbook / load_workbook ────────────────────────────────


def _xlsx_bytes() -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Team A"
    ws.append(["PO Number", "PO Date", "Amount"])
    ws.append(["PO1", datetime(2024, 1, 1), 100])
    ws.append(["PO2", None, "$5"])
    wb.create_sheet(title="Blank")
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def test_read_workbook_returns_sheets_in_order_with_narrowed_cells() -> None:
    sheets = read_workbook(_xlsx_bytes())

    assert [s.name for s in sheets] == ["Team A", "Blank"]
    grid = sheets[0].rows
    assert grid[0] == ["PO Number", "PO Date", "Amount"]
    assert grid[1] == ["PO1", datetime(2024, 1, 1), 100]
    assert grid[2] == ["PO2", None, "$5"]
    assert sheets[1].is_empty


def test_read_workbook_rejects_empty_and_unknown_bytes() -> None:
    with pytest.raises(DecodeError, match="empty"):
        read_workbook(b"")
    with pytest.raises(DecodeError, match="not a recognised"):
        read_workbook(b"hello world")
    with pytest.raises(DecodeError, match="Unsupported file type"):
        read_workbook(b"a,b\n1,2", suffix=".txt")


def test_read_workbook_wraps_corrupt_container() -> None:
    with pytest.raises(DecodeError, match="Could not decode workbook"):
        read_workbook(b"PK\x03\x04 truncated zip", suffix=".xlsx")


def test_read_workbook_uses_xlrd_for_legacy_files(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, object] = {}

    def _fake_read_excel(*_args: object, **kwargs: object) -> dict[str, pd.DataFrame]:
        seen.update(kwargs)
        return {"Legacy": pd.DataFrame([["PO", "Date"], ["PO1", ""]], dtype=object)}

    monkeypatch.setattr(pd, "read_excel", _fake_read_excel)

    sheets = read_workbook(_OLE2)

    assert seen["engine"] == "xlrd"
    assert seen["sheet_name"] is None
    assert seen["header"] is None
    assert sheets[0].name == "Legacy"
    assert sheets[0].rows == [["PO", "Date"], ["PO1", None]]


def test_read_workbook_reports_missing_engine(monkeypatch: pytest.MonkeyPatch) -> None:
    def _raise_import_error(*_args: object, **_kwargs: object) -> None:
        raise ImportError("Missing optional dependency 'xlrd'")

    monkeypatch.setattr(pd, "read_excel", _raise_import_error)

    with pytest.raises(DecodeError, match="pip install xlrd"):
        read_workbook(_OLE2, suffix=".xls")


def test_load_workbook_reads_xlsx_file(tmp_path: Path) -> None:
    path = tmp_path / "book.xlsx"
    path.write_bytes(_xlsx_bytes())

    sheets = load_workbook(path)

    assert sheets[0].rows[1][0] == "PO1"


def test_load_workbook_reads_csv_as_single_sheet(tmp_path: Path) -> None:
    path = tmp_path / "Team B.csv"
    path.write_text("PO Number,Vendor\nPO1,Acme\nPO2,\n", encoding="utf-8")

    sheets = load_workbook(path)

    assert len(sheets) == 1
    assert sheets[0].name == "Team B"
    assert sheets[0].rows == [["PO Number", "Vendor"], ["PO1", "Acme"], ["PO2", None]]


def test_load_workbook_empty_csv_is_empty_sheet(tmp_path: Path) -> None:
    path = tmp_path / "empty.csv"
    path.write_text("", encoding="utf-8")

    [sheet] = load_workbook(path)

    assert sheet.is_empty


def test_load_workbook_path_errors(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_workbook(tmp_path / "missing.xlsx")
    with pytest.raises(ValueError, match="directory, not a file"):
        load_workbook(tmp_path)


# ── JSON helpers ─────────────────────────────────────────────────


def test_write_json_is_sorted_and_serialises_dates(tmp_path: Path) -> None:
    out = write_json(tmp_path / "nested" / "data.json", {"b": date(2024, 1, 2), "a": tmp_path})

    text = out.read_text(encoding="utf-8")
    assert text.index('"a"') < text.index('"b"')
    assert json.loads(text) == {"a": str(tmp_path), "b": "2024-01-02"}
    assert not (tmp_path / "nested" / "data.json.tmp").exists()


# ── Snapshot ─────────────────────────────────────────────────────


def test_snapshot_round_trip_revives_dates(tmp_path: Path) -> None:
    path = tmp_path / "snapshot.json"
    rows = _rows()

    save_snapshot(path, rows)
    loaded = load_snapshot(path)

    assert loaded == rows
    assert loaded[0].gr_date == datetime(2024, 1, 9, 14, 30)
    assert loaded[1].gr_date is None


def test_snapshot_wire_format_is_tagged(tmp_path: Path) -> None:
    path = save_snapshot(tmp_path / "snapshot.json", _rows()[:1])

    store = json.loads(path.read_text(encoding="utf-8"))
    entry = store[SNAPSHOT_KEY]
    assert entry["schema_version"] == 1
    assert entry["fields"]["creationDate"] == "datetime"
    assert entry["fields"]["grDate"] == "datetime?"
    assert entry["fields"]["poAmount"] == "number"
    assert entry["rows"][0]["creationDate"] == "2024-01-05T00:00:00"
    assert entry["rows"][0]["poNumber"] == "PO1"


def test_snapshot_preserves_other_keys_and_replaces_own(tmp_path: Path) -> None:
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps({"theme": "dark"}), encoding="utf-8")

    save_snapshot(path, _rows())
    save_snapshot(path, _rows()[1:])

    store = json.loads(path.read_text(encoding="utf-8"))
    assert store["theme"] == "dark"
    assert [r.po_number for r in load_snapshot(path)] == ["PO2"]


def test_clear_snapshot_removes_only_its_key(tmp_path: Path) -> None:
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps({"theme": "dark"}), encoding="utf-8")
    save_snapshot(path, _rows())

    assert clear_snapshot(path) is True
    assert clear_snapshot(path) is False
    assert clear_snapshot(tmp_path / "absent.json") is False
    assert json.loads(path.read_text(encoding="utf-8")) == {"theme": "dark"}
    with pytest.raises(KeyError):
        load_snapshot(path)


def test_load_snapshot_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_snapshot(tmp_path / "absent.json")


@pytest.mark.parametrize(
    ("payload", "match"),
    [
        ("{not json", "not valid JSON"),
        (json.dumps([1, 2]), "JSON object"),
        (json.dumps({SNAPSHOT_KEY: []}), "must be an object"),
        (json.dumps({SNAPSHOT_KEY: {"schema_version": 99, "fields": {}, "rows": []}}), "schema version"),
        (json.dumps({SNAPSHOT_KEY: {"schema_version": 1}}), "missing 'fields' or 'rows'"),
        (
            json.dumps(
                {
                    SNAPSHOT_KEY: {
                        "schema_version": 1,
                        "fields": {"poNumber": "string", "creationDate": "datetime"},
                        "rows": [{"poNumber": "", "creationDate": "2024-01-01T00:00:00"}],
                    }
                }
            ),
            "row 0 is invalid",
        ),
        (
            json.dumps(
                {
                    SNAPSHOT_KEY: {
                        "schema_version": 1,
                        "fields": {"poNumber": "string", "creationDate": "datetime"},
                        "rows": [{"poNumber": "PO1", "creationDate": 45000}],
                    }
                }
            ),
            "ISO-8601",
        ),
    ],
)
def test_load_snapshot_rejects_malformed_entries(tmp_path: Path, payload: str, match: str) -> None:
    path = tmp_path / "snapshot.json"
    path.write_text(payload, encoding="utf-8")

    with pytest.raises(ValueError, match=match):
        load_snapshot(path)


# ── CSV export ───────────────────────────────────────────────────


def test_format_display_date() -> None:
    assert format_display_date(datetime(2024, 3, 7, 18, 45)) == "03/07/2024"
    assert format_display_date(None) == "N/A"


def test_format_csv_quotes_strings_and_leaves_numbers_bare() -> None:
    text = format_csv(aggregate_pos(_rows()))

    lines = text.split("\n")
    assert lines[0] == ",".join(CSV_HEADERS)
    assert lines[1] == '"PO1","01/05/2024","Alice","Acme","Team A",100,150,-50'
    assert lines[2] == '"PO2","02/01/2024","","","",12.5,0,12.5'
    assert not text.endswith("\n")


def test_format_csv_escapes_embedded_quotes() -> None:
    row = CanonicalRow(po_number="PO1", creation_date=datetime(2024, 1, 1), vendor_name='Acme "Intl", Ltd')

    text = format_csv(aggregate_pos([row]))

    assert '"Acme ""Intl"", Ltd"' in text


def test_export_csv_with_no_groups_writes_header_only(tmp_path: Path) -> None:
    path = export_csv(tmp_path / "procurement_data.csv", [])

    assert path.read_text(encoding="utf-8") == ",".join(CSV_HEADERS)
