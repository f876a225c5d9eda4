"""Duplicate detection and resolution for parsed import rows.

Rows are grouped per sheet by natural key (``code``). Within a group the
candidates are ranked by completeness, and each group gets a recommended
strategy:

- identical rows -> KEEP_FIRST (auto-resolvable)
- rows that never disagree on a populated value -> MERGE
- rows that conflict -> KEEP_LAST

Detection is advisory and never mutates its input.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..models import (
    DepartmentRecord,
    DetectionResult,
    DuplicateCandidate,
    DuplicateGroup,
    DuplicateResolution,
    EntityRecord,
    EntityType,
    PositionRecord,
    ResolutionStrategy,
    SheetDuplicates,
)

logger = logging.getLogger(__name__)

__all__ = [
    "apply_resolutions",
    "auto_resolve_all",
    "detect_duplicates",
    "detect_sheet_duplicates",
    "get_strategy_description",
    "get_strategy_label",
    "resolve_duplicate",
]

_STRATEGY_LABELS = {
    ResolutionStrategy.KEEP_FIRST: "Keep first",
    ResolutionStrategy.KEEP_LAST: "Keep last",
    ResolutionStrategy.MERGE: "Merge",
    ResolutionStrategy.KEEP_ALL: "Keep all",
}
_STRATEGY_DESCRIPTIONS = {
    ResolutionStrategy.KEEP_FIRST: "Keep the earliest row and drop the others",
    ResolutionStrategy.KEEP_LAST: "Keep the most recently listed row and drop the others",
    ResolutionStrategy.MERGE: "Combine the rows, filling empty fields from the other rows",
    ResolutionStrategy.KEEP_ALL: "Keep every row; the import will reject the batch until resolved",
}


def _natural_key(code: str) -> str:
    return code.strip().casefold()


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, dict, list)) and not value:
        return True
    return False


def _differing_fields(records: Sequence[EntityRecord]) -> List[str]:
    snapshots = [record.significant_fields() for record in records]
    names = list(snapshots[0])
    return [name for name in names if any(snap.get(name) != snapshots[0].get(name) for snap in snapshots[1:])]


def _conflicting_fields(records: Sequence[EntityRecord], fields: Iterable[str]) -> List[str]:
    conflicts = []
    for name in fields:
        populated = []
        for record in records:
            value = getattr(record, name)
            if not _is_empty(value) and value not in populated:
                populated.append(value)
        if len(populated) > 1:
            conflicts.append(name)
    return conflicts


def _build_group(sheet: EntityType, members: List[tuple[int, EntityRecord]]) -> DuplicateGroup:
    records = [record for _, record in members]
    differences = _differing_fields(records)

    candidates = [
        DuplicateCandidate(record=record, order=order, completeness=record.completeness())
        for order, record in members
    ]
    candidates.sort(key=lambda candidate: (-candidate.completeness, candidate.order))
    for candidate in candidates:
        candidate.differences = list(differences)

    if not differences:
        strategy = ResolutionStrategy.KEEP_FIRST
        reason = "All rows are identical"
    else:
        conflicts = _conflicting_fields(records, differences)
        if not conflicts:
            strategy = ResolutionStrategy.MERGE
            reason = "Rows complement each other: " + ", ".join(differences)
        else:
            strategy = ResolutionStrategy.KEEP_LAST
            reason = "Rows conflict on: " + ", ".join(conflicts)

    return DuplicateGroup(
        sheet=sheet,
        key=members[0][1].code,
        candidates=candidates,
        recommended_strategy=strategy,
        is_auto_resolvable=not differences,
        reason=reason,
    )


def detect_sheet_duplicates(sheet: EntityType, records: Sequence[EntityRecord]) -> SheetDuplicates:
    buckets: "OrderedDict[str, List[tuple[int, EntityRecord]]]" = OrderedDict()
    for order, record in enumerate(records):
        buckets.setdefault(_natural_key(record.code), []).append((order, record))

    groups = [_build_group(sheet, members) for members in buckets.values() if len(members) > 1]
    return SheetDuplicates(sheet=sheet, groups=groups)


def detect_duplicates(
    departments: Sequence[DepartmentRecord] = (),
    positions: Sequence[PositionRecord] = (),
) -> DetectionResult:
    """Find rows sharing a code within each sheet."""

    result = DetectionResult(
        departments=detect_sheet_duplicates(EntityType.DEPARTMENTS, departments),
        positions=detect_sheet_duplicates(EntityType.POSITIONS, positions),
    )
    if result.has_duplicates:
        logger.info(
            "Duplicate scan: groups=%d duplicates=%d affected_rows=%d auto_resolvable=%d",
            len(result.groups),
            result.total_duplicates,
            result.total_affected_rows,
            result.auto_resolvable,
        )
    return result


def _merged_fields(group: DuplicateGroup) -> Dict[str, Any]:
    ranked = [candidate.record.significant_fields() for candidate in group.candidates]
    merged: Dict[str, Any] = {}
    for name in ranked[0]:
        merged[name] = next((snapshot[name] for snapshot in ranked if not _is_empty(snapshot[name])), ranked[0][name])
    return merged


def resolve_duplicate(
    group: DuplicateGroup, strategy: Optional[ResolutionStrategy] = None
) -> DuplicateResolution:
    """Turn a group into the rows to keep and drop under ``strategy``."""

    chosen = ResolutionStrategy(strategy or group.recommended_strategy)
    by_order = sorted(group.candidates, key=lambda candidate: candidate.order)
    merged_data = None

    if chosen is ResolutionStrategy.KEEP_ALL:
        keep = by_order
    elif chosen is ResolutionStrategy.KEEP_FIRST:
        keep = by_order[:1]
    elif chosen is ResolutionStrategy.KEEP_LAST:
        keep = by_order[-1:]
    else:
        keep = group.candidates[:1]
        merged_data = _merged_fields(group)

    kept_orders = {candidate.order for candidate in keep}
    return DuplicateResolution(
        sheet=group.sheet,
        key=group.key,
        strategy=chosen,
        keep_rows=[candidate.source_row for candidate in keep],
        remove_rows=[candidate.source_row for candidate in by_order if candidate.order not in kept_orders],
        merged_data=merged_data,
    )


def auto_resolve_all(result: DetectionResult) -> List[DuplicateResolution]:
    return [resolve_duplicate(group) for group in result.groups]


def apply_resolutions(
    records: Sequence[EntityRecord], resolutions: Iterable[DuplicateResolution]
) -> List[EntityRecord]:
    """Drop removed rows and substitute merged data; rows are matched by ``source_row``."""

    if not records:
        return []
    sheet = records[0].ENTITY
    removed: set[int] = set()
    merged: Dict[int, Dict[str, Any]] = {}
    for resolution in resolutions:
        if resolution.sheet is not sheet:
            continue
        removed.update(resolution.remove_rows)
        if resolution.merged_data is not None and resolution.keep_rows:
            merged[resolution.keep_rows[0]] = resolution.merged_data

    output: List[EntityRecord] = []
    for record in records:
        if record.source_row in removed:
            continue
        if record.source_row in merged:
            record = record.model_copy(update=merged[record.source_row])
        output.append(record)
    return output


def get_strategy_label(strategy: ResolutionStrategy) -> str:
    return _STRATEGY_LABELS[ResolutionStrategy(strategy)]


def get_strategy_description(strategy: ResolutionStrategy) -> str:
    return _STRATEGY_DESCRIPTIONS[ResolutionStrategy(strategy)]
