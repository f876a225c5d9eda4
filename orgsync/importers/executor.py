"""Import executor: applies a classified batch to an ``OrgStore``.

Order of operations is fixed:

1. read existing department/position codes and reject the batch if any
   reference cannot resolve (no writes happen)
2. create departments parents-first, then update existing departments one
   at a time
3. refresh the department map, insert new positions in one batch, then
   update existing positions one at a time

Single updates that fail are recorded in ``ImportResult.failures`` and the
run continues. Anything else stops the run and is re-raised with the
partial result attached. Nothing is rolled back.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence

from ..error_taxonomy import (
    ERR_INTERNAL,
    ERR_STORE_NOT_FOUND,
    BatchWriteError,
    ImportValidationError,
    ReconciliationError,
    ReferenceIssue,
    StoreError,
)
from ..logging_setup import event
from ..models import (
    DepartmentRecord,
    EntityType,
    ImportFailure,
    ImportResult,
    PositionRecord,
    ProgressEvent,
)
from ..stores.base import OrgStore
from .classifier import assign_operations, partition
from .hierarchy import MAX_PASSES, create_in_hierarchy
from .payloads import department_changes, department_insert_row, position_changes, position_insert_row
from .validation import check_preconditions

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


def _classified(records: Sequence, existing: Dict[str, str]) -> list:
    if all(record.operation is not None for record in records):
        return list(records)
    pending = [record for record in records if record.operation is None]
    classified = {id(record): copy for record, copy in zip(pending, assign_operations(pending, existing))}
    return [classified.get(id(record), record) for record in records]


class ImportExecutor:
    """Runs one import for one organization against an injected store."""

    def __init__(
        self,
        store: OrgStore,
        *,
        max_passes: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.store = store
        self.max_passes = MAX_PASSES if max_passes is None else max_passes
        self.on_progress = on_progress

    def _progress(self, stage: str, processed: int, total: int, message: str = "") -> None:
        if self.on_progress is not None:
            self.on_progress(ProgressEvent(stage=stage, processed=processed, total=total, message=message))

    def execute(
        self,
        org_id: str,
        departments: Sequence[DepartmentRecord],
        positions: Sequence[PositionRecord],
    ) -> ImportResult:
        if not org_id or not str(org_id).strip():
            raise ImportValidationError(
                [ReferenceIssue(EntityType.DEPARTMENTS, "-", "organization_id", "organization id is required")]
            )

        result = ImportResult(total_departments=len(departments), total_positions=len(positions))
        logger.info(
            "Import starting org=%s departments=%d positions=%d",
            org_id,
            len(departments),
            len(positions),
            extra={"org": org_id},
        )

        try:
            dept_ids = self.store.get_existing_codes(org_id, EntityType.DEPARTMENTS)
            pos_ids = self.store.get_existing_codes(org_id, EntityType.POSITIONS)
            check_preconditions(departments, positions, dept_ids, pos_ids)
            self._progress("validated", 0, result.total_departments + result.total_positions)

            dept_records = _classified(departments, dept_ids)
            self._import_departments(org_id, dept_records, dept_ids, result)

            dept_ids = self.store.get_existing_codes(org_id, EntityType.DEPARTMENTS)
            pos_ids = self.store.get_existing_codes(org_id, EntityType.POSITIONS)
            pos_records = _classified(positions, pos_ids)
            self._import_positions(org_id, pos_records, dept_ids, pos_ids, result)
        except ImportValidationError:
            raise
        except ReconciliationError as exc:
            exc.partial_result = result
            logger.error("Import aborted org=%s: %s", org_id, exc, extra={"org": org_id})
            event("import.aborted", org_id=org_id, **exc.to_log_dict(), partial=result.as_dict())
            raise

        logger.info(
            "Import finished org=%s departments created=%d updated=%d positions created=%d updated=%d failures=%d",
            org_id,
            result.departments_created,
            result.departments_updated,
            result.positions_created,
            result.positions_updated,
            len(result.failures),
            extra={"org": org_id},
        )
        event("import.completed", org_id=org_id, **result.as_dict())
        total = result.total_departments + result.total_positions
        self._progress("completed", total, total)
        return result

    # ------------------------------------------------------------------
    # departments
    # ------------------------------------------------------------------

    def _import_departments(
        self,
        org_id: str,
        records: List[DepartmentRecord],
        dept_ids: Dict[str, str],
        result: ImportResult,
    ) -> None:
        to_create, to_update = partition(records)

        if to_create:
            try:
                created = create_in_hierarchy(
                    self.store,
                    org_id,
                    to_create,
                    dept_ids,
                    entity=EntityType.DEPARTMENTS,
                    build_row=department_insert_row,
                    max_passes=self.max_passes,
                )
            except ReconciliationError as exc:
                result.departments_created = getattr(exc, "created_count", 0)
                raise
            result.departments_created = created.created_count
        self._progress("departments_created", result.departments_created, len(to_create))

        for index, record in enumerate(to_update, start=1):
            if self._update_one(org_id, EntityType.DEPARTMENTS, record, department_changes(record, dept_ids), result):
                result.departments_updated += 1
            self._progress("departments_updated", index, len(to_update), record.code)

    # ------------------------------------------------------------------
    # positions
    # ------------------------------------------------------------------

    def _import_positions(
        self,
        org_id: str,
        records: List[PositionRecord],
        dept_ids: Dict[str, str],
        pos_ids: Dict[str, str],
        result: ImportResult,
    ) -> None:
        to_create, to_update = partition(records)

        if to_create:
            new_codes = {record.code for record in to_create}
            for record in to_create:
                target = record.reports_to_code
                if target and target not in pos_ids and target in new_codes:
                    message = (
                        f"position {record.code}: reports-to {target} is created in the same batch; "
                        "reports_to_id left empty"
                    )
                    logger.warning(message)
                    result.warnings.append(message)

            rows = [position_insert_row(record, dept_ids, pos_ids) for record in to_create]
            try:
                inserted = self.store.batch_insert(org_id, EntityType.POSITIONS, rows)
            except BatchWriteError as exc:
                exc.codes = exc.codes or sorted(new_codes)
                raise
            result.positions_created = inserted.affected_rows
            for item in inserted.returning:
                pos_ids[item.code] = item.id
            logger.info("Created %d position(s)", inserted.affected_rows)
        self._progress("positions_created", result.positions_created, len(to_create))

        for index, record in enumerate(to_update, start=1):
            changes = position_changes(record, dept_ids, pos_ids)
            if self._update_one(org_id, EntityType.POSITIONS, record, changes, result):
                result.positions_updated += 1
            self._progress("positions_updated", index, len(to_update), record.code)

    def _update_one(self, org_id: str, entity: EntityType, record, changes: dict, result: ImportResult) -> bool:
        try:
            affected = self.store.update_by_code(org_id, entity, record.code, changes)
        except StoreError as exc:
            logger.error("Failed to update %s %s: %s", entity.value, record.code, exc)
            self._record_failure(result, entity, record, str(exc), exc.error_code.code)
            return False
        except Exception as exc:
            logger.exception("Unexpected error updating %s %s", entity.value, record.code)
            self._record_failure(result, entity, record, f"{type(exc).__name__}: {exc}", ERR_INTERNAL.code)
            return False
        if not affected:
            logger.warning("Update matched no %s row for %s", entity.value, record.code)
            self._record_failure(
                result, entity, record, f"{entity.value[:-1]} {record.code} not found", ERR_STORE_NOT_FOUND.code
            )
            return False
        return True

    @staticmethod
    def _record_failure(result: ImportResult, entity: EntityType, record, reason: str, error_code: str) -> None:
        result.failures.append(
            ImportFailure(
                entity=entity,
                code=record.code,
                reason=reason,
                source_row=record.source_row,
                error_code=error_code,
            )
        )


def execute_import(
    store: OrgStore,
    org_id: str,
    departments: Sequence[DepartmentRecord],
    positions: Sequence[PositionRecord],
    *,
    max_passes: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> ImportResult:
    """Convenience wrapper around ``ImportExecutor(store).execute(...)``."""

    executor = ImportExecutor(store, max_passes=max_passes, on_progress=on_progress)
    return executor.execute(org_id, departments, positions)
