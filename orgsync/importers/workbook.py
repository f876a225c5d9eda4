"""Spreadsheet parsing for organization imports.

- ``.xlsx``/``.xls`` workbooks with ``departments`` and ``positions`` sheets
  (sheet names are matched case-insensitively)
- ``.csv`` files holding a single sheet, read with ``read_sheet``
- header is spreadsheet row 1, so the first data row is ``source_row`` 2
- bad cells produce ``ParseIssue`` entries; the rest of the file still parses
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from pydantic import ValidationError

from ..error_taxonomy import WorkbookFormatError
from ..models import DepartmentRecord, EntityType, PositionRecord

logger = logging.getLogger(__name__)

__all__ = ["ParseIssue", "ParsedWorkbook", "parse_workbook", "read_sheet"]

HEADER_ROW_OFFSET = 2

REQUIRED_COLUMNS: Dict[EntityType, Tuple[str, ...]] = {
    EntityType.DEPARTMENTS: ("dept_code", "name"),
    EntityType.POSITIONS: ("pos_code", "title", "dept_code"),
}

COLUMN_ALIASES: Dict[str, str] = {
    "department_code": "dept_code",
    "parent_code": "parent_dept_code",
    "parent_department_code": "parent_dept_code",
    "position_code": "pos_code",
    "reports_to_code": "reports_to_pos_code",
    "reports_to": "reports_to_pos_code",
    "incumbents": "incumbents_count",
}

_TRUE_VALUES = {"true", "yes", "y", "1"}
_FALSE_VALUES = {"false", "no", "n", "0"}


@dataclass(slots=True)
class ParseIssue:
    """Information about a cell or row that failed to parse."""

    sheet: EntityType
    row_number: int
    error: str
    column: Optional[str] = None
    fatal: bool = True

    def __str__(self) -> str:
        where = f"{self.sheet.value} row {self.row_number}"
        if self.column:
            where += f" [{self.column}]"
        return f"{where}: {self.error}"


@dataclass(slots=True)
class ParsedWorkbook:
    departments: List[DepartmentRecord] = field(default_factory=list)
    positions: List[PositionRecord] = field(default_factory=list)
    issues: List[ParseIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(issue.fatal for issue in self.issues)

    def summary(self) -> Dict[str, int]:
        return {
            "departments": len(self.departments),
            "positions": len(self.positions),
            "issues": len(self.issues),
        }


def _normalize_header(value: Any) -> str:
    header = str(value or "").strip().lower().replace(" ", "_")
    return COLUMN_ALIASES.get(header, header)


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float):
        if pd.isna(value):
            return None
        if value.is_integer():
            value = int(value)
    text = str(value).strip()
    return text or None


def _parse_bool(value: Any, default: bool) -> Tuple[bool, Optional[str]]:
    if isinstance(value, bool):
        return value, None
    text = _clean(value)
    if text is None:
        return default, None
    lowered = text.lower()
    if lowered in _TRUE_VALUES:
        return True, None
    if lowered in _FALSE_VALUES:
        return False, None
    return default, f"unrecognized boolean {text!r}; using {default}"


def _parse_count(value: Any) -> Tuple[int, Optional[str]]:
    text = _clean(value)
    if text is None:
        return 0, None
    try:
        count = int(float(text))
    except ValueError:
        return 0, f"invalid number {text!r}; using 0"
    if count < 0:
        return 0, f"negative count {count}; using 0"
    return count, None


def _parse_metadata(value: Any) -> Dict[str, Any] | None:
    if isinstance(value, dict):
        return value
    text = _clean(value)
    if text is None:
        return None
    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError("metadata must be a JSON object")
    return parsed


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def _prepare_frame(frame: pd.DataFrame, sheet: EntityType) -> pd.DataFrame:
    frame = frame.rename(columns=_normalize_header)
    missing = [column for column in REQUIRED_COLUMNS[sheet] if column not in frame.columns]
    if missing:
        raise WorkbookFormatError(f"{sheet.value} sheet is missing required column(s): {', '.join(missing)}")
    return frame.astype(object).where(pd.notna(frame), None)


def _department_from_row(row: Dict[str, Any], row_number: int, issues: List[ParseIssue]) -> DepartmentRecord | None:
    try:
        metadata = _parse_metadata(row.get("metadata"))
    except ValueError as exc:
        issues.append(ParseIssue(EntityType.DEPARTMENTS, row_number, f"invalid metadata JSON: {exc}", "metadata"))
        return None
    try:
        return DepartmentRecord(
            code=_clean(row.get("dept_code")) or "",
            name=_clean(row.get("name")) or "",
            parent_code=_clean(row.get("parent_dept_code")),
            description=_clean(row.get("description")),
            metadata=metadata,
            source_row=row_number,
        )
    except ValidationError as exc:
        issues.append(ParseIssue(EntityType.DEPARTMENTS, row_number, _validation_message(exc)))
        return None


def _position_from_row(row: Dict[str, Any], row_number: int, issues: List[ParseIssue]) -> PositionRecord | None:
    is_manager, manager_note = _parse_bool(row.get("is_manager"), False)
    is_active, active_note = _parse_bool(row.get("is_active"), True)
    incumbents, count_note = _parse_count(row.get("incumbents_count"))
    for column, note in (("is_manager", manager_note), ("is_active", active_note), ("incumbents_count", count_note)):
        if note:
            issues.append(ParseIssue(EntityType.POSITIONS, row_number, note, column, fatal=False))
    try:
        return PositionRecord(
            code=_clean(row.get("pos_code")) or "",
            title=_clean(row.get("title")) or "",
            department_code=_clean(row.get("dept_code")) or "",
            reports_to_code=_clean(row.get("reports_to_pos_code")),
            is_manager=is_manager,
            is_active=is_active,
            incumbents_count=incumbents,
            source_row=row_number,
        )
    except ValidationError as exc:
        issues.append(ParseIssue(EntityType.POSITIONS, row_number, _validation_message(exc)))
        return None


def parse_frame(frame: pd.DataFrame, sheet: EntityType, issues: List[ParseIssue]) -> list:
    frame = _prepare_frame(frame, sheet)
    builder = _department_from_row if sheet is EntityType.DEPARTMENTS else _position_from_row
    records = []
    for offset, row in enumerate(frame.to_dict(orient="records")):
        row_number = offset + HEADER_ROW_OFFSET
        if all(_clean(value) is None for value in row.values()):
            continue
        record = builder(row, row_number, issues)
        if record is not None:
            records.append(record)
        else:
            logger.warning("Skipping %s row %d", sheet.value, row_number)
    return records


def read_sheet(path: Path | str, sheet: EntityType) -> ParsedWorkbook:
    """Parse a single CSV (or the first worksheet of a workbook) as ``sheet``."""

    path = Path(path)
    sheet = EntityType(sheet)
    if path.suffix.lower() == ".csv":
        frame = pd.read_csv(path, dtype=str, keep_default_na=False, skip_blank_lines=False)
    else:
        frame = pd.read_excel(path, sheet_name=0, dtype=object)
    result = ParsedWorkbook()
    records = parse_frame(frame, sheet, result.issues)
    if sheet is EntityType.DEPARTMENTS:
        result.departments = records
    else:
        result.positions = records
    return result


def parse_workbook(path: Path | str) -> ParsedWorkbook:
    """Parse an Excel workbook with ``departments`` and/or ``positions`` sheets."""

    path = Path(path)
    if not path.exists():
        raise WorkbookFormatError(f"File not found: {path}")
    if path.suffix.lower() == ".csv":
        raise WorkbookFormatError("CSV files hold one sheet; use read_sheet(path, entity)")

    sheets = pd.read_excel(path, sheet_name=None, dtype=object)
    by_name = {str(name).strip().lower(): frame for name, frame in sheets.items()}
    found = [entity for entity in EntityType if entity.value in by_name]
    if not found:
        raise WorkbookFormatError(
            f"{path.name} has no 'departments' or 'positions' sheet (found: {', '.join(map(str, sheets))})"
        )

    result = ParsedWorkbook()
    if EntityType.DEPARTMENTS.value in by_name:
        result.departments = parse_frame(by_name[EntityType.DEPARTMENTS.value], EntityType.DEPARTMENTS, result.issues)
    if EntityType.POSITIONS.value in by_name:
        result.positions = parse_frame(by_name[EntityType.POSITIONS.value], EntityType.POSITIONS, result.issues)

    logger.info(
        "Parsed %s: departments=%d positions=%d issues=%d",
        path.name,
        len(result.departments),
        len(result.positions),
        len(result.issues),
    )
    return result
