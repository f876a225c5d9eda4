"""Dependency-ordered batch creation for self-referencing records.

Each pass inserts, in one write, every remaining record whose dependency
(parent department) already has an id. Generated ids feed the next pass.
The loop stops when nothing remains, when a pass finds nothing eligible, or
after ``MAX_PASSES`` passes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, MutableMapping, Optional, Sequence

from ..error_taxonomy import BatchWriteError, DependencyResolutionError, StoreErrorKind
from ..logging_setup import event
from ..models import DepartmentRecord, EntityRecord, EntityType
from ..stores.base import OrgStore
from .payloads import department_insert_row

logger = logging.getLogger(__name__)

MAX_PASSES = 10

RowBuilder = Callable[[Any, MutableMapping[str, str]], Dict[str, Any]]


@dataclass(slots=True)
class HierarchyResult:
    created_count: int
    code_to_id: Dict[str, str]
    passes: int
    created_codes: List[str] = field(default_factory=list)


def _is_eligible(record: EntityRecord, code_to_id: MutableMapping[str, str], created: set[str]) -> bool:
    dependency = record.dependency_code
    return dependency is None or dependency in code_to_id or dependency in created


def create_in_hierarchy(
    store: OrgStore,
    org_id: str,
    to_create: Sequence[EntityRecord],
    code_to_id: MutableMapping[str, str],
    *,
    entity: EntityType = EntityType.DEPARTMENTS,
    build_row: Optional[RowBuilder] = None,
    max_passes: int = MAX_PASSES,
) -> HierarchyResult:
    """Insert ``to_create`` parents-first; ``code_to_id`` is updated in place."""

    if max_passes < 1:
        raise ValueError("max_passes must be at least 1")
    builder: RowBuilder = build_row or department_insert_row  # type: ignore[assignment]

    remaining: List[EntityRecord] = list(to_create)
    created: set[str] = set()
    created_order: List[str] = []
    created_count = 0
    passes = 0

    while remaining and passes < max_passes:
        passes += 1
        eligible = [record for record in remaining if _is_eligible(record, code_to_id, created)]
        if not eligible:
            unresolved = {record.code: record.dependency_code for record in remaining}
            logger.error(
                "Pass %d: %d %s record(s) blocked on missing parents: %s",
                passes,
                len(remaining),
                entity.value,
                unresolved,
            )
            raise DependencyResolutionError(unresolved, passes=passes, created_count=created_count)

        rows = [builder(record, code_to_id) for record in eligible]
        try:
            inserted = store.batch_insert(org_id, entity, rows)
        except BatchWriteError as exc:
            exc.created_count = created_count
            exc.codes = exc.codes or [record.code for record in eligible]
            raise

        created_count += inserted.affected_rows
        for item in inserted.returning:
            code_to_id[item.code] = item.id
        eligible_codes = {record.code for record in eligible}
        returned_codes = {item.code for item in inserted.returning}
        missing = sorted(eligible_codes - returned_codes)
        if missing:
            # Children of these rows would be written without a parent id.
            logger.error("Pass %d: store returned no id for %s", passes, missing)
            raise BatchWriteError(
                f"store returned no id for {entity.value} {', '.join(missing)}",
                entity=entity,
                codes=missing,
                created_count=created_count,
                store_kind=StoreErrorKind.SCHEMA,
            )
        created.update(returned_codes)
        created_order.extend(record.code for record in eligible)
        remaining = [record for record in remaining if record.code not in eligible_codes]

        logger.info(
            "Pass %d: created %d %s, %d remaining",
            passes,
            inserted.affected_rows,
            entity.value,
            len(remaining),
        )
        event(
            "import.hierarchy_pass",
            entity=entity.value,
            org_id=org_id,
            pass_number=passes,
            created=inserted.affected_rows,
            remaining=len(remaining),
        )

    if remaining:
        unresolved = {record.code: record.dependency_code for record in remaining}
        logger.error("Pass limit %d reached with %d %s unresolved", max_passes, len(remaining), entity.value)
        raise DependencyResolutionError(
            unresolved,
            passes=passes,
            created_count=created_count,
            pass_limit_exhausted=True,
        )

    return HierarchyResult(
        created_count=created_count,
        code_to_id=dict(code_to_id),
        passes=passes,
        created_codes=created_order,
    )


def plan_hierarchy_levels(records: Sequence[DepartmentRecord], known_codes: Sequence[str] = ()) -> List[List[str]]:
    """Codes grouped by the pass in which they would be created; cycles are omitted."""

    available = set(known_codes)
    remaining = list(records)
    levels: List[List[str]] = []
    while remaining:
        level = [record for record in remaining if record.parent_code is None or record.parent_code in available]
        if not level:
            break
        levels.append([record.code for record in level])
        available.update(record.code for record in level)
        level_codes = {record.code for record in level}
        remaining = [record for record in remaining if record.code not in level_codes]
    return levels
