from __future__ import annotations

import pytest

from orgsync.error_taxonomy import (
    ERR_INTERNAL,
    ERR_STORE_NETWORK,
    ERR_STORE_NOT_FOUND,
    BatchWriteError,
    DependencyResolutionError,
    ImportValidationError,
    StoreError,
    StoreErrorKind,
)
from orgsync.importers.executor import ImportExecutor, execute_import
from orgsync.models import EntityType, OperationType
from orgsync.stores.memory import DryRunStore, InMemoryStore, StoreCall


def _seed_departments(store, org_id, *codes):
    return store.seed(org_id, EntityType.DEPARTMENTS, [{"dept_code": code, "name": code} for code in codes])


def _seed_positions(store, org_id, department_id, *codes):
    return store.seed(
        org_id,
        EntityType.POSITIONS,
        [{"pos_code": code, "title": code, "department_id": department_id} for code in codes],
    )


def test_full_import_creates_and_updates(store, org_id, make_department, make_position):
    existing = _seed_departments(store, org_id, "HQ")
    _seed_positions(store, org_id, existing["HQ"], "CEO")

    departments = [
        make_department("HQ", name="Headquarters"),
        make_department("ENG", "HQ"),
        make_department("WEB", "ENG", metadata={"floor": 3}),
    ]
    positions = [
        make_position("CEO", "HQ", title="Chief Executive", is_manager=True),
        make_position("CTO", "ENG", "CEO", is_manager=True, incumbents_count=1),
        make_position("DEV", "WEB", "CEO"),
    ]

    result = execute_import(store, org_id, departments, positions)

    assert result.departments_created == 2
    assert result.departments_updated == 1
    assert result.positions_created == 2
    assert result.positions_updated == 1
    assert result.failures == []
    assert result.total_departments == 3
    assert result.total_positions == 3

    dept_rows = store.rows(org_id, EntityType.DEPARTMENTS)
    pos_rows = store.rows(org_id, EntityType.POSITIONS)
    assert dept_rows["HQ"]["name"] == "Headquarters"
    assert dept_rows["WEB"]["parent_id"] == dept_rows["ENG"]["id"]
    assert dept_rows["WEB"]["metadata"] == {"floor": 3}
    assert pos_rows["CTO"]["department_id"] == dept_rows["ENG"]["id"]
    assert pos_rows["CTO"]["reports_to_id"] == pos_rows["CEO"]["id"]
    assert pos_rows["CEO"]["title"] == "Chief Executive"
    assert pos_rows["CEO"]["is_manager"] is True


def test_write_order_is_departments_then_positions(store, org_id, make_department, make_position):
    _seed_departments(store, org_id, "OLD")
    departments = [make_department("OLD"), make_department("NEW")]
    positions = [make_position("P1", "NEW")]

    execute_import(store, org_id, departments, positions)

    sequence = [(call.operation, call.entity) for call in store.write_calls]
    assert sequence == [
        ("insert", EntityType.DEPARTMENTS),
        ("update", EntityType.DEPARTMENTS),
        ("insert", EntityType.POSITIONS),
    ]


def test_position_with_unknown_department_is_rejected_before_writes(store, org_id, make_department, make_position):
    departments = [make_department("ENG")]
    positions = [make_position("P1", "MISSING")]

    with pytest.raises(ImportValidationError) as excinfo:
        execute_import(store, org_id, departments, positions)

    assert store.write_calls == []
    issue = excinfo.value.issues[0]
    assert issue.entity is EntityType.POSITIONS
    assert issue.field == "department_code"
    assert issue.value == "MISSING"
    assert excinfo.value.partial_result is None


def test_unknown_parent_and_duplicate_codes_are_rejected(store, org_id, make_department):
    departments = [make_department("A", "NOPE"), make_department("B"), make_department("B")]

    with pytest.raises(ImportValidationError) as excinfo:
        execute_import(store, org_id, departments, [])

    fields = sorted({issue.field for issue in excinfo.value.issues})
    assert fields == ["code", "parent_code"]
    assert store.write_calls == []


def test_missing_org_id_is_rejected(store, make_department):
    with pytest.raises(ImportValidationError):
        execute_import(store, "  ", [make_department("A")], [])
    assert store.calls == []


def test_one_failed_update_does_not_stop_the_rest(org_id, make_department, make_position):
    store = InMemoryStore(fail_on_update={"P3"})
    dept_ids = _seed_departments(store, org_id, "OPS")
    codes = ["P1", "P2", "P3", "P4", "P5"]
    _seed_positions(store, org_id, dept_ids["OPS"], *codes)
    positions = [make_position(code, "OPS", title=f"Updated {code}") for code in codes]

    result = execute_import(store, org_id, [], positions)

    assert result.positions_updated == 4
    assert len(result.failures) == 1
    failure = result.failures[0]
    assert failure.code == "P3"
    assert failure.entity is EntityType.POSITIONS
    assert failure.source_row == positions[2].source_row
    assert failure.error_code == StoreErrorKind.UNKNOWN.error_code.code
    rows = store.rows(org_id, EntityType.POSITIONS)
    assert rows["P5"]["title"] == "Updated P5"
    assert rows["P3"]["title"] == "P3"


def test_failed_department_update_is_reported(org_id, make_department):
    store = InMemoryStore(fail_on_update={"B"})
    _seed_departments(store, org_id, "A", "B", "C")

    result = execute_import(store, org_id, [make_department(code) for code in "ABC"], [])

    assert result.departments_updated == 2
    assert [failure.code for failure in result.failures] == ["B"]


def test_update_matching_no_row_is_a_failure(store, org_id, make_department):
    record = make_department("GHOST").with_operation(OperationType.UPDATE)

    result = execute_import(store, org_id, [record], [])

    assert result.departments_updated == 0
    assert result.failures[0].error_code == ERR_STORE_NOT_FOUND.code
    assert "not found" in result.failures[0].reason


def test_same_batch_reports_to_is_left_empty_and_flagged(store, org_id, make_department, make_position):
    departments = [make_department("ENG")]
    positions = [make_position("LEAD", "ENG"), make_position("DEV", "ENG", "LEAD")]

    result = execute_import(store, org_id, departments, positions)

    rows = store.rows(org_id, EntityType.POSITIONS)
    assert rows["DEV"]["reports_to_id"] is None
    assert result.positions_created == 2
    assert len(result.warnings) == 1
    assert "DEV" in result.warnings[0] and "LEAD" in result.warnings[0]


def test_position_update_can_point_at_position_created_this_run(store, org_id, make_department, make_position):
    dept_ids = _seed_departments(store, org_id, "ENG")
    _seed_positions(store, org_id, dept_ids["ENG"], "DEV")
    positions = [make_position("LEAD", "ENG"), make_position("DEV", "ENG", "LEAD")]

    execute_import(store, org_id, [], positions)

    rows = store.rows(org_id, EntityType.POSITIONS)
    assert rows["DEV"]["reports_to_id"] == rows["LEAD"]["id"]


def test_dependency_error_carries_partial_result(store, org_id, make_department, make_position):
    departments = [make_department("ROOT"), make_department("X", "Y"), make_department("Y", "X")]

    with pytest.raises(DependencyResolutionError) as excinfo:
        execute_import(store, org_id, departments, [make_position("P", "ROOT")])

    partial = excinfo.value.partial_result
    assert partial is not None
    assert partial.departments_created == 1
    assert partial.positions_created == 0
    assert excinfo.value.unresolved == {"X": "Y", "Y": "X"}


def test_position_batch_failure_aborts_with_partial_result(org_id, make_department, make_position):
    store = InMemoryStore(fail_on_insert={"P2"})
    departments = [make_department("D1")]
    positions = [make_position("P1", "D1"), make_position("P2", "D1")]

    with pytest.raises(BatchWriteError) as excinfo:
        execute_import(store, org_id, departments, positions)

    assert excinfo.value.entity is EntityType.POSITIONS
    assert excinfo.value.partial_result.departments_created == 1
    assert excinfo.value.partial_result.positions_created == 0


def test_progress_events_are_reported(store, org_id, make_department, make_position):
    events = []
    executor = ImportExecutor(store, on_progress=events.append)

    executor.execute(org_id, [make_department("A")], [make_position("P", "A")])

    stages = [event.stage for event in events]
    assert stages[0] == "validated"
    assert stages[-1] == "completed"
    assert "departments_created" in stages
    assert "positions_created" in stages
    assert events[-1].percent == 100.0


def test_dry_run_store_leaves_inner_store_untouched(store, org_id, make_department, make_position):
    _seed_departments(store, org_id, "HQ")
    dry_run = DryRunStore(store)

    result = execute_import(
        dry_run,
        org_id,
        [make_department("HQ"), make_department("NEW", "HQ")],
        [make_position("P", "NEW")],
    )

    assert result.departments_created == 1
    assert result.departments_updated == 1
    assert result.positions_created == 1
    assert store.write_calls == []
    assert set(store.rows(org_id, EntityType.DEPARTMENTS)) == {"HQ"}
    assert [call.operation for call in dry_run.writes] == ["insert", "update", "insert"]


class _FlakyUpdateStore(InMemoryStore):
    """Raises the given exception when a specific code is updated."""

    def __init__(self, failures):
        super().__init__()
        self.failures = failures

    def update_by_code(self, org_id, entity, code, changes):
        if code in self.failures:
            self.calls.append(StoreCall("update", entity, [code]))
            raise self.failures[code]
        return super().update_by_code(org_id, entity, code, changes)


def test_update_errors_of_any_kind_do_not_stop_the_rest(org_id, make_position):
    store = _FlakyUpdateStore(
        {
            "P3": StoreError("connection reset", store_kind=StoreErrorKind.NETWORK),
            "P4": RuntimeError("driver bug"),
        }
    )
    dept_ids = _seed_departments(store, org_id, "OPS")
    codes = ["P1", "P2", "P3", "P4", "P5"]
    _seed_positions(store, org_id, dept_ids["OPS"], *codes)
    positions = [make_position(code, "OPS", title=f"Updated {code}") for code in codes]

    result = execute_import(store, org_id, [], positions)

    assert result.positions_updated == 3
    by_code = {failure.code: failure for failure in result.failures}
    assert by_code["P3"].error_code == ERR_STORE_NETWORK.code
    assert "connection reset" in by_code["P3"].reason
    assert by_code["P4"].error_code == ERR_INTERNAL.code
    assert "RuntimeError" in by_code["P4"].reason
    assert store.rows(org_id, EntityType.POSITIONS)["P5"]["title"] == "Updated P5"


def test_explicit_zero_pass_limit_is_rejected(store, org_id, make_department):
    with pytest.raises(ValueError, match="max_passes"):
        execute_import(store, org_id, [make_department("A")], [], max_passes=0)

    assert store.write_calls == []
