"""CLI entry point for po-ledger."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table as RichTable

from po_ledger import CANONICAL_FIELDS, __version__
from po_ledger.headers import HeaderMatcher, preview_header_detection
from po_ledger.io import (
    DecodeError,
    clear_snapshot,
    export_csv,
    format_display_date,
    load_snapshot,
    load_workbook,
    save_snapshot,
    write_json,
)
from po_ledger.models import GroupedPo, IngestReport, RunManifest
from po_ledger.pipeline import (
    aggregate_pos,
    compute_marketer_po_counts,
    compute_po_metrics,
    earliest_creation_date,
    filter_rows,
    ingest_workbook,
    search_groups,
    sort_groups,
)
from po_ledger.qc import INGEST_REPORT_NAME, load_ingest_report, write_ingest_report
from po_ledger.report import write_report
from po_ledger.synonyms import HEADER_SYNONYMS, MAX_HEADER_SEARCH_ROWS, SNAPSHOT_KEY, merge_synonyms
from po_ledger.utils import make_run_id, sha256_bytes, utcnow_iso

app = typer.Typer(
    name="poledger",
    help="po-ledger — Reconcile messy PO / invoice spreadsheets into per-PO ledgers.",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()
logger = logging.getLogger("po_ledger.cli")

DEFAULT_SNAPSHOT = Path("output") / "snapshot.json"
EXIT_INPUT_ERROR = 2
EXIT_EMPTY_RESULT = 3

EMPTY_RESULT_HINT = (
    'Check the file for recognisable headers (e.g. "PO Number", "Creation Date") '
    "and make sure data exists below the header row."
)
DECODE_HINT = (
    "The file might be corrupted or in an unsupported format. "
    "Try re-saving it as .xlsx."
)


class StatusOption(str, Enum):
    all = "All"
    open = "Open"
    closed = "Closed"


def _noop(*_args: object, **_kwargs: object) -> None:
    return None


def _printer(quiet: bool) -> Callable[..., None]:
    return _noop if quiet else console.print


def _err(msg: str) -> None:
    console.print(f"[red]x[/red] {msg}")


def _configure_logging(level: str, quiet: bool) -> None:
    resolved = logging.ERROR if quiet else getattr(logging, level.upper(), logging.WARNING)
    root = logging.getLogger("po_ledger")
    root.handlers.clear()
    root.addHandler(RichHandler(console=console, show_path=False, markup=False))
    root.setLevel(resolved)
    root.propagate = False


# ── Helpers ──────────────────────────────────────────────────────


def _stored_ingest_report(path: Path) -> IngestReport | None:
    try:
        return load_ingest_report(path)
    except FileNotFoundError:
        logger.info("No ingest report at %s; Dashboard omits ingest notes", path)
    except ValueError as exc:
        logger.warning("Ignoring unreadable ingest report %s: %s", path, exc)
    return None


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"po-ledger v{__version__}")
        raise typer.Exit()


_FIELD_LOOKUP: dict[str, str] = {
    re.sub(r"[^a-z0-9]", "", name.lower()): name for name in CANONICAL_FIELDS
}


def _canonical_field(name: str) -> str:
    key = re.sub(r"[^a-z0-9]", "", name.lower())
    if key not in _FIELD_LOOKUP:
        raise ValueError(
            f"Unknown field {name.strip()!r} in mapping. "
            f"Expected one of: {', '.join(CANONICAL_FIELDS)}"
        )
    return _FIELD_LOOKUP[key]


def _parse_synonym_map(raw: list[str] | None) -> dict[str, list[str]]:
    """Parse ``--map field=Header`` pairs into ``{field: [headers]}``."""
    if not raw:
        return {}
    mapping: dict[str, list[str]] = {}
    for item in raw:
        if "=" not in item:
            raise ValueError(f"Invalid --map value: {item!r}  (expected field=Header)")
        target, source = item.split("=", 1)
        if not target.strip() or not source.strip():
            raise ValueError("--map entries must have non-empty field and header (field=Header)")
        mapping.setdefault(_canonical_field(target), []).append(source.strip())
    return mapping


def _load_profile_map(profile: Path | None) -> list[str]:
    """Return list of ``field=Header`` strings from a profile file."""
    if not profile:
        return []
    if not profile.exists():
        raise ValueError(f"Profile not found: {profile} (expected lines like poAmount=Net Value)")
    if profile.is_dir():
        raise ValueError(f"Profile is a directory, not a file: {profile}")
    try:
        text = profile.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Cannot read profile {profile}: {exc}") from exc

    lines: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        lines.append(stripped)
    return lines


def _build_matcher(profile: Path | None, col_map: list[str] | None) -> HeaderMatcher:
    extra = _parse_synonym_map(_load_profile_map(profile) + (col_map or []))
    if not extra:
        return HeaderMatcher(HEADER_SYNONYMS)
    return HeaderMatcher(merge_synonyms(HEADER_SYNONYMS, extra))


def _input_digest(input_file: Path) -> str:
    try:
        return sha256_bytes(input_file.read_bytes())
    except OSError:
        return ""


def _write_manifest(
    out_dir: Path,
    input_file: Path,
    run_id: str,
    created_at: str,
    report: IngestReport,
    *,
    command: str,
    status: str = "success",
    error_code: int | None = None,
    error_message: str = "",
) -> Path:
    manifest = RunManifest(
        version=__version__,
        run_id=run_id,
        command=command,
        input_path=str(input_file.resolve()),
        output_dir=str(out_dir.resolve()),
        created_at_utc=created_at,
        rows_in=report.rows_in,
        rows_out=report.rows_out,
        sha256=_input_digest(input_file),
        status=status,
        error_code=error_code,
        error_message=error_message,
    )
    return write_json(out_dir / "run_manifest.json", manifest.to_dict())


def _fail(
    out_dir: Path,
    input_file: Path,
    run_id: str,
    created_at: str,
    *,
    message: str,
    report: IngestReport | None = None,
    error_code: int = EXIT_INPUT_ERROR,
    hint: str = "",
) -> NoReturn:
    report = report or IngestReport()
    report_path = write_ingest_report(out_dir, report)
    manifest_path = _write_manifest(
        out_dir,
        input_file,
        run_id,
        created_at,
        report,
        command="ingest",
        status="failed",
        error_code=error_code,
        error_message=message,
    )
    _err(message)
    if hint:
        console.print(f"  Hint: {hint}")
    console.print(f"  Ingest report -> {report_path}")
    console.print(f"  Manifest      -> {manifest_path}")
    raise typer.Exit(code=error_code)


def _po_table(groups: list[GroupedPo], limit: int) -> RichTable:
    tbl = RichTable(title=f"Purchase Orders ({len(groups)})", show_lines=False)
    for header, justify in (
        ("PO Number", "left"),
        ("Created", "left"),
        ("Marketer", "left"),
        ("Vendor", "left"),
        ("Team", "left"),
        ("PO Amount", "right"),
        ("Invoiced", "right"),
        ("Left", "right"),
    ):
        tbl.add_column(header, justify=justify)  # type: ignore[arg-type]
    for po in groups[:limit]:
        left = f"{po.amount_left:,.2f}"
        tbl.add_row(
            po.po_number,
            format_display_date(po.creation_date),
            po.marketer_name,
            po.vendor_name,
            po.team_name,
            f"{po.po_amount:,.2f}",
            f"{po.invoice_sum:,.2f}",
            f"[red]{left}[/red]" if po.amount_left < 0 else left,
        )
    return tbl


# ── Callbacks ────────────────────────────────────────────────────


@app.callback()
def main(
    version: bool | None = typer.Option(
        None, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """po-ledger CLI."""


# ── ingest command ───────────────────────────────────────────────


@app.command()
def ingest(
    input_file: Path = typer.Option(
        ..., "--input", "-i",
        help="Path to the .xlsx / .xls workbook (or .csv).",
        exists=True, readable=True,
    ),
    out_dir: Path = typer.Option(
        Path("output"), "--out-dir", "-o",
        help="Output directory for the ingest report + manifest.",
    ),
    snapshot: Path | None = typer.Option(
        None, "--snapshot", "-s",
        help="Snapshot store to write (default: <out-dir>/snapshot.json).",
    ),
    col_map: list[str] | None = typer.Option(
        None, "--map", "-m",
        help="Extra header synonym: field=Header. E.g. --map poAmount='Net Value'",
    ),
    profile: Path | None = typer.Option(
        None, "--profile",
        help="Profile file containing header synonyms (field=Header lines).",
    ),
    dayfirst: bool = typer.Option(
        False,
        "--dayfirst/--monthfirst",
        help="Date parsing mode for ambiguous text dates like 01/02/2024.",
    ),
    header_rows: int = typer.Option(
        MAX_HEADER_SEARCH_ROWS, "--header-rows",
        help="How many leading rows to scan for the header row.",
        min=1,
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q",
        help="Suppress informational output; still writes all artifacts.",
    ),
    log_level: str = typer.Option(
        "WARNING", "--log-level",
        help="Diagnostic log level (DEBUG, INFO, WARNING, ERROR).",
    ),
) -> None:
    """Ingest a workbook into the normalised snapshot."""
    _configure_logging(log_level, quiet)
    echo = _printer(quiet)
    created_at = utcnow_iso()
    run_id = make_run_id(created_at, _input_digest(input_file))
    out_dir.mkdir(parents=True, exist_ok=True)
    snapshot_path = snapshot or out_dir / "snapshot.json"

    try:
        matcher = _build_matcher(profile, col_map)
    except ValueError as exc:
        _fail(out_dir, input_file, run_id, created_at, message=str(exc))

    if not quiet:
        console.print(Panel(
            f"[bold]po-ledger[/bold] v{__version__}\n"
            f"Input:    {input_file}\nSnapshot: {snapshot_path}",
            title="Ingest", border_style="blue",
        ))
        if profile:
            console.print(f"  Using profile: {profile}")
        console.print(
            f"  Parse mode: date={'DD/MM' if dayfirst else 'MM/DD'}, header_rows={header_rows}"
        )

    # ── Decode ───────────────────────────────────────────────────
    echo("[blue]>[/blue] Reading workbook …")
    try:
        sheets = load_workbook(input_file)
    except DecodeError as exc:
        _fail(out_dir, input_file, run_id, created_at, message=str(exc), hint=DECODE_HINT)
    except (FileNotFoundError, ValueError, OSError) as exc:
        _fail(out_dir, input_file, run_id, created_at, message=str(exc))

    echo(f"  {len(sheets)} sheet(s): {', '.join(s.name for s in sheets) or '-'}")

    try:
        # ── Normalise ────────────────────────────────────────────
        echo("[blue]>[/blue] Normalising rows …")
        rows, report = ingest_workbook(
            sheets, matcher, max_header_rows=header_rows, dayfirst=dayfirst
        )
        report_path = write_ingest_report(out_dir, report)
        echo(f"  Ingest report -> {report_path}")

        if report.is_empty:
            _fail(
                out_dir,
                input_file,
                run_id,
                created_at,
                message="No valid data rows found.",
                report=report,
                error_code=EXIT_EMPTY_RESULT,
                hint=EMPTY_RESULT_HINT,
            )

        # ── Persist ──────────────────────────────────────────────
        snapshot_path = save_snapshot(snapshot_path, rows)
        echo(f"  Snapshot -> {snapshot_path}")
        manifest_path = _write_manifest(
            out_dir, input_file, run_id, created_at, report, command="ingest"
        )
        echo(f"  Manifest -> {manifest_path}")

        if not quiet:
            console.print(Panel(
                f"[green]Done[/green] — {report.rows_out} rows kept, "
                f"{report.dropped_rows} skipped, {report.fallback_count} value fallbacks",
                title="Ingest Complete", border_style="green",
            ))
    except typer.Exit:
        raise
    except Exception as exc:
        _fail(
            out_dir,
            input_file,
            run_id,
            created_at,
            message=f"Unexpected internal error: {exc}",
            error_code=1,
        )


# ── preview command ──────────────────────────────────────────────


@app.command()
def preview(
    input_file: Path = typer.Option(
        ..., "--input", "-i",
        help="Path to the .xlsx / .xls workbook (or .csv).",
        exists=True, readable=True,
    ),
    col_map: list[str] | None = typer.Option(
        None, "--map", "-m",
        help="Extra header synonym: field=Header.",
    ),
    profile: Path | None = typer.Option(
        None, "--profile",
        help="Profile file containing header synonyms (field=Header lines).",
    ),
    header_rows: int = typer.Option(
        MAX_HEADER_SEARCH_ROWS, "--header-rows",
        help="How many leading rows to scan for the header row.",
        min=1,
    ),
) -> None:
    """Show the detected header row of the first sheet and its field mapping."""
    _configure_logging("WARNING", quiet=False)
    try:
        matcher = _build_matcher(profile, col_map)
        sheets = load_workbook(input_file)
    except (FileNotFoundError, ValueError, OSError) as exc:
        _err(str(exc))
        if isinstance(exc, DecodeError):
            console.print(f"  Hint: {DECODE_HINT}")
        raise typer.Exit(code=EXIT_INPUT_ERROR)

    if not sheets or sheets[0].is_empty:
        _err("The first sheet is empty.")
        raise typer.Exit(code=EXIT_EMPTY_RESULT)

    result = preview_header_detection(sheets[0], matcher, max_rows=header_rows)

    console.print(
        f"Sheet [bold]{result['sheet']}[/bold]: header row "
        f"{result['header_row_index'] + 1}"
    )
    mapping_tbl = RichTable(title="Header Mapping", show_lines=True)
    mapping_tbl.add_column("Header", style="bold")
    mapping_tbl.add_column("Field")
    for header in result["headers"]:
        field_name = result["mapped_headers"].get(header)
        mapping_tbl.add_row(header or "[dim](blank)[/dim]", field_name or "[dim]ignored[/dim]")
    console.print(mapping_tbl)

    preview_tbl = RichTable(title="Preview Rows")
    for idx, header in enumerate(result["headers"]):
        preview_tbl.add_column(header or f"col{idx + 1}")
    width = len(result["headers"])
    for row in result["preview_rows"]:
        cells = ["" if v is None else str(v) for v in row[:width]]
        preview_tbl.add_row(*(cells + [""] * (width - len(cells))))
    console.print(preview_tbl)


# ── report command ───────────────────────────────────────────────


@app.command("report")
def report_cmd(
    snapshot: Path = typer.Option(
        DEFAULT_SNAPSHOT, "--snapshot", "-s",
        help="Snapshot store written by `poledger ingest`.",
    ),
    out_dir: Path = typer.Option(
        Path("output"), "--out-dir", "-o",
        help="Output directory for CSV / Excel exports.",
    ),
    start_date: datetime | None = typer.Option(
        None, "--start-date",
        help="Keep POs created on/after this date (default: earliest in data).",
        formats=["%Y-%m-%d"],
    ),
    marketer: str = typer.Option(
        "", "--marketer",
        help="Comma-separated marketer name fragments, e.g. 'Smith, Jones'.",
    ),
    status: StatusOption = typer.Option(
        StatusOption.all, "--status",
        help="Row status filter.",
    ),
    search: str = typer.Option(
        "", "--search",
        help="Search PO number, marketer, vendor, team, or invoice number.",
    ),
    sort: str | None = typer.Option(
        None, "--sort",
        help="Sort key, e.g. amountLeft, poAmount, creationDate.",
    ),
    descending: bool = typer.Option(
        False, "--descending/--ascending",
        help="Sort direction.",
    ),
    csv_name: str = typer.Option(
        "procurement_data.csv", "--csv",
        help="CSV export file name (inside --out-dir).",
    ),
    xlsx: bool = typer.Option(
        True, "--xlsx/--no-xlsx",
        help="Also write PO_Report.xlsx.",
    ),
    ingest_report: Path | None = typer.Option(
        None, "--ingest-report",
        help="ingest_report.json shown on the Dashboard (default: next to --snapshot).",
    ),
    limit: int = typer.Option(
        25, "--limit",
        help="Maximum PO rows to print.",
        min=0,
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q",
        help="Suppress informational output; still writes exports.",
    ),
) -> None:
    """Filter, aggregate, and export the stored snapshot per PO."""
    _configure_logging("WARNING", quiet)
    echo = _printer(quiet)

    try:
        rows = load_snapshot(snapshot, SNAPSHOT_KEY)
    except (FileNotFoundError, KeyError):
        _err(f"No data found in {snapshot}. Run `poledger ingest` first.")
        raise typer.Exit(code=EXIT_INPUT_ERROR)
    except ValueError as exc:
        _err(f"Could not read stored data ({exc}). It might be corrupted; ingest again.")
        raise typer.Exit(code=EXIT_INPUT_ERROR)

    if not rows:
        _err("Stored data is empty. Ingest a new file.")
        raise typer.Exit(code=EXIT_EMPTY_RESULT)

    start = start_date or earliest_creation_date(rows)
    filtered = filter_rows(rows, start_date=start, marketers=marketer, status=status.value)
    groups = aggregate_pos(filtered)
    shown = search_groups(groups, search)
    if sort:
        try:
            shown = sort_groups(shown, sort, descending=descending)
        except ValueError as exc:
            _err(str(exc))
            raise typer.Exit(code=EXIT_INPUT_ERROR)

    metrics = compute_po_metrics(filtered, groups)

    if not quiet:
        tbl = RichTable(title="Key Metrics", show_lines=True)
        tbl.add_column("Metric", style="bold")
        tbl.add_column("Value", justify="right")
        for label, value in metrics.items():
            tbl.add_row(label, f"{value:,.2f}" if isinstance(value, float) else str(value))
        console.print(tbl)
        console.print(_po_table(shown, limit))
        if len(shown) > limit:
            console.print(f"  … {len(shown) - limit} more")

    out_dir.mkdir(parents=True, exist_ok=True)
    csv_path = export_csv(out_dir / csv_name, shown)
    echo(f"  CSV    -> {csv_path}")
    if xlsx:
        report_path = write_report(
            out_dir,
            shown,
            filtered,
            metrics,
            compute_marketer_po_counts(filtered),
            _stored_ingest_report(ingest_report or snapshot.parent / INGEST_REPORT_NAME),
        )
        echo(f"  Report -> {report_path}")


# ── clear command ────────────────────────────────────────────────


@app.command()
def clear(
    snapshot: Path = typer.Option(
        DEFAULT_SNAPSHOT, "--snapshot", "-s",
        help="Snapshot store to clear.",
    ),
) -> None:
    """Remove the stored procurement data from the snapshot store."""
    try:
        removed = clear_snapshot(snapshot, SNAPSHOT_KEY)
    except ValueError as exc:
        _err(str(exc))
        raise typer.Exit(code=EXIT_INPUT_ERROR)
    if removed:
        console.print("Stored procurement data has been cleared.")
    else:
        console.print("No stored procurement data to clear.")
