"""Store row payloads built from records and code->id maps."""

from __future__ import annotations

from typing import Any, Dict, Mapping

from ..models import DepartmentRecord, PositionRecord

CodeMap = Mapping[str, str]


def _lookup(code_to_id: CodeMap, code: str | None) -> str | None:
    if not code:
        return None
    return code_to_id.get(code)


def department_insert_row(record: DepartmentRecord, dept_ids: CodeMap) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "dept_code": record.code,
        "name": record.name,
        "parent_id": _lookup(dept_ids, record.parent_code),
    }
    if record.description is not None:
        row["description"] = record.description
    if record.metadata is not None:
        row["metadata"] = record.metadata
    return row


def department_changes(record: DepartmentRecord, dept_ids: CodeMap) -> Dict[str, Any]:
    changes = department_insert_row(record, dept_ids)
    changes.pop("dept_code")
    return changes


def position_insert_row(record: PositionRecord, dept_ids: CodeMap, pos_ids: CodeMap) -> Dict[str, Any]:
    return {
        "pos_code": record.code,
        "title": record.title,
        "department_id": _lookup(dept_ids, record.department_code),
        "reports_to_id": _lookup(pos_ids, record.reports_to_code),
        "is_manager": record.is_manager,
        "incumbents_count": record.incumbents_count,
        "is_active": record.is_active,
    }


def position_changes(record: PositionRecord, dept_ids: CodeMap, pos_ids: CodeMap) -> Dict[str, Any]:
    changes = position_insert_row(record, dept_ids, pos_ids)
    changes.pop("pos_code")
    return changes
