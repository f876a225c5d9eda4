from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import typer

from .core_config import get_settings
from .error_taxonomy import ImportValidationError, ReconciliationError
from .importers.duplicates import (
    apply_resolutions,
    auto_resolve_all,
    detect_duplicates,
    get_strategy_label,
)
from .importers.executor import ImportExecutor
from .importers.validation import validate_batch
from .importers.workbook import ParsedWorkbook, parse_workbook, read_sheet
from .logging_setup import configure_logging
from .models import EntityType, ProgressEvent
from .stores import DryRunStore, build_store

app = typer.Typer(help="Department and position import console.")

EXIT_REJECTED = 1
EXIT_PARTIAL = 2


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _load(path: Path, sheet: Optional[EntityType]) -> ParsedWorkbook:
    try:
        if path.suffix.lower() == ".csv":
            return read_sheet(path, sheet or EntityType.DEPARTMENTS)
        return parse_workbook(path)
    except ReconciliationError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=EXIT_REJECTED)


def _open_store(settings, backend: Optional[str]):
    try:
        return build_store(settings, backend)
    except ReconciliationError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=EXIT_REJECTED)


def _print_parse_issues(parsed: ParsedWorkbook) -> None:
    for issue in parsed.issues:
        level = "ERROR" if issue.fatal else "WARN"
        typer.echo(f"[{level}] {issue}")


def _progress_printer(event: ProgressEvent) -> None:
    if event.stage.endswith("_updated") and event.processed != event.total and event.processed % 25:
        return
    typer.echo(f"  • {event.stage}: {event.processed}/{event.total} ({event.percent}%)")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
) -> None:
    configure_logging(log_level or get_settings().log_level)


@app.command("check")
def check_command(
    workbook: Path = typer.Argument(..., exists=True, file_okay=True, dir_okay=False, readable=True),
    sheet: Optional[EntityType] = typer.Option(None, "--sheet", help="Sheet a CSV file holds"),
    org_id: Optional[str] = typer.Option(None, "--org", help="Also resolve references against this organization"),
    backend: Optional[str] = typer.Option(None, "--backend", help="supabase | graphql | memory"),
) -> None:
    """Parse and validate a workbook without writing anything."""
    parsed = _load(workbook, sheet)
    _print_parse_issues(parsed)

    existing_departments: dict[str, str] = {}
    existing_positions: dict[str, str] = {}
    if org_id:
        store = _open_store(get_settings(), backend)
        try:
            existing_departments = store.get_existing_codes(org_id, EntityType.DEPARTMENTS)
            existing_positions = store.get_existing_codes(org_id, EntityType.POSITIONS)
        except ReconciliationError as exc:
            typer.echo(f"[ERROR] could not read existing codes ({exc.error_code}): {exc}")
            raise typer.Exit(code=EXIT_REJECTED)

    report = validate_batch(
        parsed.departments,
        parsed.positions,
        existing_departments=existing_departments,
        existing_positions=existing_positions,
        max_passes=get_settings().max_passes,
    )
    for issue in report.errors:
        typer.echo(f"[ERROR] {issue}")
    for issue in report.warnings:
        typer.echo(f"[WARN] {issue}")

    summary = parsed.summary()
    typer.echo(
        f"departments={summary['departments']} positions={summary['positions']} "
        f"errors={len(report.errors)} warnings={len(report.warnings)}"
    )
    if report.errors or parsed.has_errors:
        raise typer.Exit(code=EXIT_REJECTED)


@app.command("duplicates")
def duplicates_command(
    workbook: Path = typer.Argument(..., exists=True, file_okay=True, dir_okay=False, readable=True),
    sheet: Optional[EntityType] = typer.Option(None, "--sheet", help="Sheet a CSV file holds"),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
) -> None:
    """Report rows that share a code and the recommended resolution."""
    parsed = _load(workbook, sheet)
    result = detect_duplicates(parsed.departments, parsed.positions)
    if as_json:
        _echo_json(result.as_dict())
        return
    if not result.has_duplicates:
        typer.echo("No duplicate codes found.")
        return
    for group in result.groups:
        typer.echo(
            f"{group.sheet.value} {group.key}: rows {group.source_rows} -> "
            f"{get_strategy_label(group.recommended_strategy)} ({group.reason})"
        )
    typer.echo(
        f"duplicates={result.total_duplicates} affected_rows={result.total_affected_rows} "
        f"auto_resolvable={result.auto_resolvable}"
    )


@app.command("import")
def import_command(
    workbook: Path = typer.Argument(..., exists=True, file_okay=True, dir_okay=False, readable=True),
    org_id: str = typer.Option(..., "--org", help="Organization id to import into"),
    sheet: Optional[EntityType] = typer.Option(None, "--sheet", help="Sheet a CSV file holds"),
    dry_run: bool = typer.Option(
        True,
        "--dry-run/--commit",
        help="Default to dry-run. Use --commit to apply changes.",
    ),
    auto_resolve: bool = typer.Option(
        False, "--auto-resolve", help="Apply recommended duplicate resolutions before importing"
    ),
    backend: Optional[str] = typer.Option(None, "--backend", help="supabase | graphql | memory"),
    quiet: bool = typer.Option(False, "--quiet", help="Suppress progress lines"),
) -> None:
    """Import a workbook into an organization."""
    settings = get_settings()
    parsed = _load(workbook, sheet)
    _print_parse_issues(parsed)
    if parsed.has_errors:
        typer.echo("[import] aborting: fix the rows above first")
        raise typer.Exit(code=EXIT_REJECTED)

    departments, positions = parsed.departments, parsed.positions
    duplicates = detect_duplicates(departments, positions)
    if duplicates.has_duplicates:
        if not auto_resolve:
            typer.echo(
                f"[import] {duplicates.total_duplicates} duplicate row(s) found; "
                "run `orgsync duplicates` or pass --auto-resolve"
            )
            raise typer.Exit(code=EXIT_REJECTED)
        resolutions = auto_resolve_all(duplicates)
        departments = apply_resolutions(departments, resolutions)
        positions = apply_resolutions(positions, resolutions)
        typer.echo(f"[import] resolved {len(resolutions)} duplicate group(s)")

    store = _open_store(settings, backend)
    if dry_run:
        store = DryRunStore(store)
        typer.echo("[import] dry-run: no changes will be written")

    executor = ImportExecutor(
        store,
        max_passes=settings.max_passes,
        on_progress=None if quiet else _progress_printer,
    )
    try:
        result = executor.execute(org_id, departments, positions)
    except ImportValidationError as exc:
        for issue in exc.issues:
            typer.echo(f"[ERROR] {issue}")
        raise typer.Exit(code=EXIT_REJECTED)
    except ReconciliationError as exc:
        typer.echo(f"[import] aborted ({exc.error_code}): {exc}")
        if exc.partial_result is not None:
            _echo_json({"partial_result": exc.partial_result.as_dict()})
        raise typer.Exit(code=EXIT_REJECTED)

    _echo_json({"dry_run": dry_run, "result": result.as_dict()})
    if result.has_failures:
        raise typer.Exit(code=EXIT_PARTIAL)


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    app()
