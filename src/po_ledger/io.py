"""I/O helpers — decode workbooks, persist snapshots, export CSV."""

from __future__ import annotations

import csv
import io
import json
import math
from collections.abc import Iterable, Sequence
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Callable, cast

import pandas as pd

from po_ledger.models import CanonicalRow, Cell, GroupedPo, Sheet
from po_ledger.synonyms import SNAPSHOT_KEY


class DecodeError(ValueError):
    """The input bytes could not be parsed as a spreadsheet container."""


_XLSX_SUFFIXES = (".xlsx", ".xlsm", ".xltx", ".xltm")
_ZIP_MAGIC = b"PK\x03\x04"
_OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

# ── Cell narrowing ───────────────────────────────────────────────


def to_cell(value: Any) -> Cell:
    """Narrow a raw value from the spreadsheet reader to a :data:`Cell`."""
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, str):
        return value if value != "" else None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime().replace(tzinfo=None)
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, time):
        return value.isoformat()
    if isinstance(value, bool):
        return str(value).upper()

    item = getattr(value, "item", None)
    if callable(item):
        value = item()
        if isinstance(value, bool):
            return str(value).upper()
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        return value
    return str(value)


def _frame_to_grid(df: pd.DataFrame) -> list[list[Cell]]:
    return [[to_cell(v) for v in row] for row in df.itertuples(index=False, name=None)]


# ── Loading ──────────────────────────────────────────────────────


def _excel_engine(data: bytes, suffix: str | None) -> str:
    if suffix in _XLSX_SUFFIXES or (suffix is None and data.startswith(_ZIP_MAGIC)):
        return "openpyxl"
    if suffix == ".xls" or (suffix is None and data.startswith(_OLE2_MAGIC)):
        return "xlrd"
    raise DecodeError(
        f"Unsupported file type: {suffix!r}. Use .xlsx or .xls"
        if suffix
        else "Input is not a recognised .xlsx or .xls workbook"
    )


def read_workbook(data: bytes, *, suffix: str | None = None) -> list[Sheet]:
    """Decode workbook *data* into its sheets, in workbook order.

    Raises
    ------
    DecodeError
        If the bytes are not a readable ``.xlsx`` / ``.xls`` container.
    """
    suffix = suffix.lower() if suffix else None
    if not data:
        raise DecodeError("Input workbook is empty (0 bytes)")
    engine = _excel_engine(data, suffix)

    read_excel = cast(Callable[..., dict[str, pd.DataFrame]], getattr(pd, "read_excel"))
    try:
        frames = read_excel(
            io.BytesIO(data),
            sheet_name=None,
            header=None,
            dtype=object,
            keep_default_na=False,
            engine=engine,
        )
    except ImportError as exc:
        raise DecodeError(
            f"Reading this workbook requires {engine!r}. "
            f"Either convert to .xlsx or add dependency: pip install {engine}"
        ) from exc
    except Exception as exc:
        raise DecodeError(f"Could not decode workbook ({type(exc).__name__}: {exc})") from exc

    return [Sheet(name=str(name), rows=_frame_to_grid(df)) for name, df in frames.items()]


def _read_csv_sheet(path: Path) -> Sheet:
    # the delimiter sniffer cannot handle a blank file
    if not path.read_bytes().strip():
        return Sheet(name=path.stem, rows=[])

    last_exc: Exception | None = None
    for encoding in ("utf-8-sig", "utf-8", "latin-1"):
        try:
            df = pd.read_csv(
                path,
                header=None,
                dtype=str,
                sep=None,
                engine="python",
                encoding=encoding,
                encoding_errors="strict",
                keep_default_na=False,
            )
        except pd.errors.EmptyDataError:
            return Sheet(name=path.stem, rows=[])
        except (UnicodeDecodeError, pd.errors.ParserError, csv.Error) as exc:
            last_exc = exc
            continue
        return Sheet(name=path.stem, rows=_frame_to_grid(df))
    raise DecodeError(f"Could not read CSV {path} (decode or parse failed)") from last_exc


def load_workbook(path: Path) -> list[Sheet]:
    """Load a ``.xlsx`` / ``.xls`` workbook (or a ``.csv`` as one sheet).

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    ValueError
        If *path* is a directory.
    DecodeError
        If the file is not a readable spreadsheet.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    if path.is_dir():
        raise ValueError(f"Input path is a directory, not a file: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        return [_read_csv_sheet(path)]
    return read_workbook(path.read_bytes(), suffix=suffix or None)


# ── Writing ──────────────────────────────────────────────────────


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    item = getattr(obj, "item", None)
    if callable(item):
        converted = item()
        if isinstance(converted, (str, int, float, bool)) or converted is None:
            return converted
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def write_text(path: Path, text: str) -> Path:
    """Write *text* to *path* atomically (temp file + replace)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(text, encoding="utf-8")
    tmp_path.replace(path)
    return path


def write_json(path: Path, data: Any) -> Path:
    """Write *data* as pretty-printed JSON to *path* (atomic + deterministic)."""
    payload = json.dumps(
        data,
        indent=2,
        sort_keys=True,
        ensure_ascii=False,
        default=_json_default,
    ) + "\n"
    return write_text(path, payload)


# ── Snapshot ─────────────────────────────────────────────────────

SNAPSHOT_SCHEMA_VERSION = 1

# wire name -> (attribute, type tag)
SNAPSHOT_FIELDS: dict[str, tuple[str, str]] = {
    "poNumber": ("po_number", "string"),
    "creationDate": ("creation_date", "datetime"),
    "marketerName": ("marketer_name", "string"),
    "vendorName": ("vendor_name", "string"),
    "teamName": ("team_name", "string"),
    "poAmount": ("po_amount", "number"),
    "invoiceNumber": ("invoice_number", "string"),
    "invoiceAmount": ("invoice_amount", "number"),
    "grDate": ("gr_date", "datetime?"),
    "status": ("status", "string"),
}


def _encode_value(value: Any, tag: str) -> Any:
    if tag in ("datetime", "datetime?"):
        return value.isoformat() if value is not None else None
    return value


def _decode_value(value: Any, tag: str, wire_name: str) -> Any:
    if tag == "string":
        if not isinstance(value, str):
            raise ValueError(f"{wire_name} must be a string")
        return value
    if tag == "number":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{wire_name} must be a number")
        return float(value)
    if tag in ("datetime", "datetime?"):
        if value is None and tag == "datetime?":
            return None
        if not isinstance(value, str):
            raise ValueError(f"{wire_name} must be an ISO-8601 string")
        return datetime.fromisoformat(value)
    raise ValueError(f"Unknown snapshot type tag {tag!r} for {wire_name}")


def _read_store(path: Path) -> dict[str, Any]:
    try:
        store = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Snapshot store {path} is not valid JSON") from exc
    if not isinstance(store, dict):
        raise ValueError(f"Snapshot store {path} must hold a JSON object")
    return store


def save_snapshot(path: Path, rows: Iterable[CanonicalRow], key: str = SNAPSHOT_KEY) -> Path:
    """Store *rows* under *key* in the JSON key-value file at *path*.

    Other keys already present in the file are preserved.
    """
    path = Path(path)
    store = _read_store(path) if path.exists() else {}
    store[key] = {
        "schema_version": SNAPSHOT_SCHEMA_VERSION,
        "fields": {wire: tag for wire, (_attr, tag) in SNAPSHOT_FIELDS.items()},
        "rows": [
            {
                wire: _encode_value(getattr(row, attr), tag)
                for wire, (attr, tag) in SNAPSHOT_FIELDS.items()
            }
            for row in rows
        ],
    }
    return write_json(path, store)


def clear_snapshot(path: Path, key: str = SNAPSHOT_KEY) -> bool:
    """Remove *key* from the store at *path*; return whether it was present."""
    path = Path(path)
    if not path.exists():
        return False
    store = _read_store(path)
    if key not in store:
        return False
    del store[key]
    write_json(path, store)
    return True


def load_snapshot(path: Path, key: str = SNAPSHOT_KEY) -> list[CanonicalRow]:
    """Load the rows stored under *key*, reviving date fields by type tag.

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    KeyError
        If the store holds no entry for *key*.
    ValueError
        If the entry is malformed.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Snapshot not found: {path}")
    store = _read_store(path)
    if key not in store:
        raise KeyError(key)

    payload = store[key]
    if not isinstance(payload, dict):
        raise ValueError(f"Snapshot entry {key!r} must be an object")
    if payload.get("schema_version") != SNAPSHOT_SCHEMA_VERSION:
        raise ValueError(
            f"Unsupported snapshot schema version: {payload.get('schema_version')!r}"
        )
    tags = payload.get("fields")
    raw_rows = payload.get("rows")
    if not isinstance(tags, dict) or not isinstance(raw_rows, list):
        raise ValueError(f"Snapshot entry {key!r} is missing 'fields' or 'rows'")

    rows: list[CanonicalRow] = []
    for index, raw in enumerate(raw_rows):
        if not isinstance(raw, dict):
            raise ValueError(f"Snapshot row {index} must be an object")
        kwargs: dict[str, Any] = {}
        for wire, (attr, _default_tag) in SNAPSHOT_FIELDS.items():
            if wire not in raw:
                continue
            tag = tags.get(wire)
            if not isinstance(tag, str):
                raise ValueError(f"Snapshot has no type tag for field {wire!r}")
            kwargs[attr] = _decode_value(raw[wire], tag, wire)
        try:
            rows.append(CanonicalRow(**kwargs))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Snapshot row {index} is invalid: {exc}") from exc
    return rows


# ── CSV export ───────────────────────────────────────────────────

CSV_HEADERS: list[str] = [
    "PO Number",
    "Creation Date",
    "Marketer Name",
    "Vendor Name",
    "Team Name",
    "PO Amount",
    "Invoice Sum",
    "Amount Left",
]


def format_display_date(value: datetime | None) -> str:
    """Format *value* as ``MM/DD/YYYY`` (``N/A`` when missing)."""
    if value is None:
        return "N/A"
    return f"{value.month:02d}/{value.day:02d}/{value.year:04d}"


def _plain_number(value: float) -> int | float:
    value = float(value)
    return int(value) if value.is_integer() else value


def format_csv(groups: Sequence[GroupedPo]) -> str:
    """Render *groups* as CSV text: strings quoted, numbers bare."""
    buffer = io.StringIO()
    buffer.write(",".join(CSV_HEADERS) + "\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
    for po in groups:
        writer.writerow(
            [
                po.po_number,
                format_display_date(po.creation_date),
                po.marketer_name,
                po.vendor_name,
                po.team_name,
                _plain_number(po.po_amount),
                _plain_number(po.invoice_sum),
                _plain_number(po.amount_left),
            ]
        )
    text = buffer.getvalue()
    return text[:-1] if text.endswith("\n") else text


def export_csv(path: Path, groups: Sequence[GroupedPo]) -> Path:
    """Write :func:`format_csv` output to *path* and return the path."""
    return write_text(path, format_csv(groups))
