"""Pre-import validation of parsed records.

- duplicate codes within a sheet
- parent / department / reports-to references that resolve nowhere
- circular parent chains (departments) and reporting chains (positions)
- multiple top-level departments (warning)
- hierarchies deeper than the creation pass limit
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Collection, Dict, List, Optional, Sequence

from ..error_taxonomy import ImportValidationError, ReferenceIssue
from ..models import DepartmentRecord, EntityRecord, EntityType, PositionRecord
from .hierarchy import MAX_PASSES, plan_hierarchy_levels

logger = logging.getLogger(__name__)

__all__ = [
    "ValidationReport",
    "check_preconditions",
    "duplicate_code_issues",
    "find_cycles",
    "reference_issues",
    "validate_batch",
]


@dataclass(slots=True)
class ValidationReport:
    errors: List[ReferenceIssue] = field(default_factory=list)
    warnings: List[ReferenceIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        if self.errors:
            raise ImportValidationError(self.errors)


def _code_key(code: str) -> str:
    return code.strip().casefold()


def duplicate_code_issues(records: Sequence[EntityRecord]) -> List[ReferenceIssue]:
    """Codes are compared case-insensitively, the same way the duplicate detector groups them."""
    counts = Counter(_code_key(record.code) for record in records)
    issues: List[ReferenceIssue] = []
    for record in records:
        count = counts[_code_key(record.code)]
        if count > 1:
            issues.append(
                ReferenceIssue(
                    entity=record.ENTITY,
                    code=record.code,
                    field="code",
                    message=f"code appears {count} times in the batch",
                    source_row=record.source_row,
                    value=record.code,
                )
            )
    return issues


def reference_issues(
    departments: Sequence[DepartmentRecord],
    positions: Sequence[PositionRecord],
    existing_departments: Collection[str],
    existing_positions: Collection[str] = (),
) -> List[ReferenceIssue]:
    """Every reference must resolve to an existing record or one in the batch."""

    dept_codes = set(existing_departments) | {record.code for record in departments}
    pos_codes = set(existing_positions) | {record.code for record in positions}
    issues: List[ReferenceIssue] = []

    for record in departments:
        if record.parent_code and record.parent_code not in dept_codes:
            issues.append(
                ReferenceIssue(
                    entity=EntityType.DEPARTMENTS,
                    code=record.code,
                    field="parent_code",
                    message=f"parent department '{record.parent_code}' does not exist",
                    source_row=record.source_row,
                    value=record.parent_code,
                )
            )

    for record in positions:
        if record.department_code not in dept_codes:
            issues.append(
                ReferenceIssue(
                    entity=EntityType.POSITIONS,
                    code=record.code,
                    field="department_code",
                    message=f"department '{record.department_code}' does not exist",
                    source_row=record.source_row,
                    value=record.department_code,
                )
            )
        if record.reports_to_code and record.reports_to_code not in pos_codes:
            issues.append(
                ReferenceIssue(
                    entity=EntityType.POSITIONS,
                    code=record.code,
                    field="reports_to_code",
                    message=f"reports-to position '{record.reports_to_code}' does not exist",
                    source_row=record.source_row,
                    value=record.reports_to_code,
                )
            )
    return issues


def find_cycles(records: Sequence[EntityRecord]) -> List[List[str]]:
    """Return each dependency cycle once, as the list of codes on the loop."""

    parent_of: Dict[str, Optional[str]] = {record.code: record.dependency_code for record in records}
    state: Dict[str, int] = {}  # 1 = on current path, 2 = done
    cycles: List[List[str]] = []

    for start in parent_of:
        if state.get(start):
            continue
        path: List[str] = []
        node: Optional[str] = start
        while node is not None and node in parent_of and not state.get(node):
            state[node] = 1
            path.append(node)
            node = parent_of[node]
        if node is not None and state.get(node) == 1:
            cycles.append(path[path.index(node):])
        for visited in path:
            state[visited] = 2
    return cycles


def _cycle_issues(entity: EntityType, records: Sequence[EntityRecord], field_name: str) -> List[ReferenceIssue]:
    rows = {record.code: record.source_row for record in records}
    issues = []
    for cycle in find_cycles(records):
        loop = " -> ".join([*cycle, cycle[0]])
        issues.append(
            ReferenceIssue(
                entity=entity,
                code=cycle[0],
                field=field_name,
                message=f"circular reference: {loop}",
                source_row=rows.get(cycle[0]),
            )
        )
    return issues


def validate_batch(
    departments: Sequence[DepartmentRecord],
    positions: Sequence[PositionRecord],
    *,
    existing_departments: Collection[str] = (),
    existing_positions: Collection[str] = (),
    max_passes: int = MAX_PASSES,
) -> ValidationReport:
    report = ValidationReport()
    report.errors.extend(duplicate_code_issues(departments))
    report.errors.extend(duplicate_code_issues(positions))
    report.errors.extend(reference_issues(departments, positions, existing_departments, existing_positions))
    report.errors.extend(_cycle_issues(EntityType.DEPARTMENTS, departments, "parent_code"))
    report.errors.extend(_cycle_issues(EntityType.POSITIONS, positions, "reports_to_code"))

    roots = [record for record in departments if record.parent_code is None]
    if len(roots) > 1:
        report.warnings.append(
            ReferenceIssue(
                entity=EntityType.DEPARTMENTS,
                code=roots[0].code,
                field="parent_code",
                message=f"{len(roots)} top-level departments: " + ", ".join(record.code for record in roots),
                source_row=roots[0].source_row,
            )
        )

    known = set(existing_departments)
    to_create = [record for record in departments if record.code not in known]
    levels = plan_hierarchy_levels(to_create, list(known))
    if len(levels) > max_passes:
        deepest = levels[-1][0]
        report.errors.append(
            ReferenceIssue(
                entity=EntityType.DEPARTMENTS,
                code=deepest,
                field="parent_code",
                message=f"hierarchy is {len(levels)} levels deep; at most {max_passes} can be created per import",
            )
        )

    if report.errors:
        logger.warning("Validation found %d error(s), %d warning(s)", len(report.errors), len(report.warnings))
    return report


def check_preconditions(
    departments: Sequence[DepartmentRecord],
    positions: Sequence[PositionRecord],
    existing_departments: Collection[str],
    existing_positions: Collection[str],
) -> None:
    """Raise ``ImportValidationError`` when the batch cannot be imported as-is."""

    issues: List[ReferenceIssue] = []
    issues.extend(duplicate_code_issues(departments))
    issues.extend(duplicate_code_issues(positions))
    issues.extend(reference_issues(departments, positions, existing_departments, existing_positions))
    if issues:
        raise ImportValidationError(issues)
