"""Data models / dataclasses used across the package."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from numbers import Integral
from typing import Any, Literal, Union

# A spreadsheet cell after boundary narrowing (see ``po_ledger.io.to_cell``).
Cell = Union[None, str, int, float, datetime]

Severity = Literal["warning", "info"]

_LOG_LEVELS: dict[str, int] = {"warning": logging.WARNING, "info": logging.INFO}


def _to_non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise TypeError(f"{field_name} must be an integer")
    result = int(value)
    if result < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return result


# ── Workbook input ───────────────────────────────────────────────


@dataclass
class Sheet:
    """One decoded worksheet: its name and raw cell grid."""

    name: str
    rows: list[list[Cell]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return len(self.rows) == 0


@dataclass(frozen=True)
class HeaderDetection:
    header_row_index: int
    headers: list[str]
    score: int = 0


# ── Canonical records ────────────────────────────────────────────


@dataclass(frozen=True)
class CanonicalRow:
    """One normalised PO / invoice line item.

    Contract invariant: ``po_number`` is non-empty and ``creation_date`` is set.
    """

    po_number: str
    creation_date: datetime
    marketer_name: str = ""
    vendor_name: str = ""
    team_name: str = ""
    po_amount: float = 0.0
    invoice_number: str = ""
    invoice_amount: float = 0.0
    gr_date: datetime | None = None
    status: str = "N/A"

    def __post_init__(self) -> None:
        if not self.po_number:
            raise ValueError("po_number must be non-empty")
        if not isinstance(self.creation_date, datetime):
            raise TypeError("creation_date must be a datetime")


@dataclass(frozen=True)
class GroupedPo:
    """Aggregate over every CanonicalRow sharing one PO number."""

    po_number: str
    creation_date: datetime | None
    marketer_name: str
    vendor_name: str
    team_name: str
    po_amount: float
    invoice_sum: float
    amount_left: float
    rows: tuple[CanonicalRow, ...] = ()


# ── Diagnostics ──────────────────────────────────────────────────


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    kind: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity,
            "kind": self.kind,
            "message": self.message,
            "context": dict(self.context),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Diagnostic:
        severity = data.get("severity")
        if severity not in _LOG_LEVELS:
            raise ValueError(f"Unknown diagnostic severity: {severity!r}")
        return cls(
            severity=severity,
            kind=str(data.get("kind", "")),
            message=str(data.get("message", "")),
            context=dict(data.get("context") or {}),
        )


class Diagnostics:
    """Collects diagnostics for one ingestion pass and mirrors them to *logger*."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.records: list[Diagnostic] = []
        self._logger = logger or logging.getLogger("po_ledger")

    def emit(self, severity: Severity, kind: str, message: str, **context: Any) -> Diagnostic:
        record = Diagnostic(severity=severity, kind=kind, message=message, context=context)
        self.records.append(record)
        self._logger.log(_LOG_LEVELS[severity], message)
        return record

    def warn(self, kind: str, message: str, **context: Any) -> Diagnostic:
        return self.emit("warning", kind, message, **context)

    def info(self, kind: str, message: str, **context: Any) -> Diagnostic:
        return self.emit("info", kind, message, **context)

    def count(self, kind: str) -> int:
        return sum(1 for record in self.records if record.kind == kind)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.records)


@dataclass
class IngestReport:
    """Quality report emitted alongside every ingestion pass.

    Contract invariant: ``dropped_rows == rows_in - rows_out``.
    """

    sheets_in: int = 0
    rows_in: int = 0
    rows_out: int = 0
    dropped_rows: int = 0
    diagnostics: list[Diagnostic] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.sheets_in = _to_non_negative_int(self.sheets_in, "sheets_in")
        self.rows_in = _to_non_negative_int(self.rows_in, "rows_in")
        self.rows_out = _to_non_negative_int(self.rows_out, "rows_out")
        self.dropped_rows = _to_non_negative_int(self.dropped_rows, "dropped_rows")
        if self.diagnostics is None:
            self.diagnostics = []
        if isinstance(self.diagnostics, (str, bytes)) or not isinstance(
            self.diagnostics, Sequence
        ):
            raise TypeError("diagnostics must be a sequence of Diagnostic")
        for item in self.diagnostics:
            if not isinstance(item, Diagnostic):
                raise TypeError("diagnostics items must be Diagnostic instances")
        self.diagnostics = list(self.diagnostics)
        if self.rows_out > self.rows_in:
            raise ValueError("rows_out must be <= rows_in")
        if self.dropped_rows != self.rows_in - self.rows_out:
            raise ValueError("dropped_rows must equal rows_in - rows_out")

    @property
    def is_empty(self) -> bool:
        return self.rows_out == 0

    @property
    def skipped_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.kind == "row_skipped")

    @property
    def fallback_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.kind == "coercion_fallback")

    @property
    def warnings(self) -> list[str]:
        return [d.message for d in self.diagnostics if d.severity == "warning"]

    def to_dict(self) -> dict[str, Any]:
        return {
            "sheets_in": self.sheets_in,
            "rows_in": self.rows_in,
            "rows_out": self.rows_out,
            "dropped_rows": self.dropped_rows,
            "skipped_rows": self.skipped_count,
            "coercion_fallbacks": self.fallback_count,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IngestReport:
        """Rebuild a report from ``to_dict`` output; derived counts are recomputed."""
        return cls(
            sheets_in=data.get("sheets_in", 0),
            rows_in=data.get("rows_in", 0),
            rows_out=data.get("rows_out", 0),
            dropped_rows=data.get("dropped_rows", 0),
            diagnostics=[Diagnostic.from_dict(d) for d in data.get("diagnostics") or []],
        )


@dataclass
class RunManifest:
    """Audit-trail manifest for a single CLI run."""

    tool: str = "po-ledger"
    version: str = ""
    run_id: str = ""
    command: str = ""
    input_path: str = ""
    output_dir: str = ""
    created_at_utc: str = ""
    rows_in: int = 0
    rows_out: int = 0
    sha256: str = ""
    status: str = "success"
    error_code: int | None = None
    error_message: str = ""

    def __post_init__(self) -> None:
        self.rows_in = _to_non_negative_int(self.rows_in, "rows_in")
        self.rows_out = _to_non_negative_int(self.rows_out, "rows_out")

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "version": self.version,
            "run_id": self.run_id,
            "command": self.command,
            "input_path": self.input_path,
            "output_dir": self.output_dir,
            "created_at_utc": self.created_at_utc,
            "rows_in": self.rows_in,
            "rows_out": self.rows_out,
            "sha256": self.sha256,
            "status": self.status,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }
