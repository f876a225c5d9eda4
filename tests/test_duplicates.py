from __future__ import annotations

import pytest

from orgsync.importers.duplicates import (
    apply_resolutions,
    auto_resolve_all,
    detect_duplicates,
    get_strategy_description,
    get_strategy_label,
    resolve_duplicate,
)
from orgsync.models import DepartmentRecord, EntityType, PositionRecord, ResolutionStrategy


def _dept(code: str, row: int, **fields) -> DepartmentRecord:
    fields.setdefault("name", "Engineering")
    return DepartmentRecord(code=code, source_row=row, **fields)


def test_complementary_rows_recommend_merge():
    rows = [
        _dept("ENG-001", 2, description=None),
        _dept("ENG-001", 3, description="dev dept"),
    ]

    result = detect_duplicates(rows)

    assert len(result.departments.groups) == 1
    group = result.departments.groups[0]
    assert len(group.candidates) == 2
    assert group.recommended_strategy is ResolutionStrategy.MERGE
    assert group.is_auto_resolvable is False
    assert result.auto_resolvable == 0
    # the more complete row ranks first
    assert group.candidates[0].source_row == 3
    assert group.candidates[0].differences == ["description"]


def test_identical_rows_are_auto_resolvable():
    rows = [
        _dept("S1", 2, name="Sales", description="x"),
        _dept("S1", 3, name="Sales", description="x"),
    ]

    result = detect_duplicates(rows)

    group = result.departments.groups[0]
    assert group.recommended_strategy is ResolutionStrategy.KEEP_FIRST
    assert group.is_auto_resolvable is True
    assert result.auto_resolvable == 1
    assert result.total_duplicates == 1
    assert result.total_affected_rows == 2


def test_conflicting_rows_recommend_keep_last():
    rows = [
        _dept("OPS", 2, name="Operations"),
        _dept("OPS", 3, name="Ops & Logistics"),
    ]

    group = detect_duplicates(rows).departments.groups[0]

    assert group.recommended_strategy is ResolutionStrategy.KEEP_LAST
    assert "name" in group.reason


def test_code_seen_three_times_forms_one_group():
    rows = [_dept("HR", row) for row in (2, 5, 9)] + [_dept("FIN", 3)]

    result = detect_duplicates(rows)

    assert len(result.departments.groups) == 1
    assert result.departments.groups[0].source_rows == [2, 5, 9]
    assert result.total_duplicates == 2


def test_grouping_ignores_case_and_whitespace():
    rows = [_dept("eng", 2), _dept(" ENG ", 3)]

    group = detect_duplicates(rows).departments.groups[0]

    assert group.key == "eng"
    assert len(group.candidates) == 2


@pytest.mark.parametrize(
    "codes",
    [
        [],
        ["A"],
        ["A", "B", "C"],
        ["A", "A"],
        ["A", "B", "A", "B", "B"],
        ["X", "X", "X", "Y", "Z", "Z"],
    ],
)
def test_totals_are_consistent(codes):
    rows = [_dept(code, index + 2) for index, code in enumerate(codes)]

    result = detect_duplicates(rows)

    groups = result.departments.groups
    assert result.total_affected_rows == sum(len(group.candidates) for group in groups)
    assert result.total_duplicates == result.total_affected_rows - len(groups)
    assert result.has_duplicates is bool(groups)


def test_positions_are_grouped_separately_from_departments():
    departments = [_dept("A", 2)]
    positions = [
        PositionRecord(code="A", title="Lead", department_code="A", source_row=2),
        PositionRecord(code="A", title="Lead", department_code="A", reports_to_code="CEO", source_row=3),
    ]

    result = detect_duplicates(departments, positions)

    assert result.departments.groups == []
    assert [group.sheet for group in result.groups] == [EntityType.POSITIONS]
    assert result.positions.groups[0].recommended_strategy is ResolutionStrategy.MERGE


def test_detection_does_not_mutate_input():
    rows = [_dept("A", 3, description="b"), _dept("A", 2)]
    snapshot = [row.model_copy() for row in rows]

    detect_duplicates(rows)

    assert rows == snapshot


def test_merge_takes_first_non_empty_value_by_rank():
    rows = [
        _dept("R", 2, parent_code="ROOT"),
        _dept("R", 3, description="research", metadata={"cost_center": "42"}),
        _dept("R", 4, description="research", parent_code="ROOT"),
    ]
    group = detect_duplicates(rows).departments.groups[0]
    # rank: row 3 and row 4 both score 2, row 3 listed earlier; row 2 scores 1
    assert group.source_rows == [3, 4, 2]

    resolution = resolve_duplicate(group, ResolutionStrategy.MERGE)

    assert resolution.keep_rows == [3]
    assert sorted(resolution.remove_rows) == [2, 4]
    assert resolution.merged_data["description"] == "research"
    assert resolution.merged_data["metadata"] == {"cost_center": "42"}
    assert resolution.merged_data["parent_code"] == "ROOT"


@pytest.mark.parametrize(
    "strategy, keep, remove",
    [
        (ResolutionStrategy.KEEP_FIRST, [2], [3, 4]),
        (ResolutionStrategy.KEEP_LAST, [4], [2, 3]),
        (ResolutionStrategy.KEEP_ALL, [2, 3, 4], []),
    ],
)
def test_resolve_duplicate_strategies(strategy, keep, remove):
    rows = [_dept("Q", 2), _dept("Q", 3, description="d"), _dept("Q", 4, name="Quality")]
    group = detect_duplicates(rows).departments.groups[0]

    resolution = resolve_duplicate(group, strategy)

    assert resolution.strategy is strategy
    assert resolution.keep_rows == keep
    assert resolution.remove_rows == remove
    assert resolution.merged_data is None


def test_auto_resolve_and_apply_produce_unique_codes():
    departments = [
        _dept("S1", 2, name="Sales", description="x"),
        _dept("S1", 3, name="Sales", description="x"),
        _dept("ENG", 4),
        _dept("ENG", 5, description="dev dept"),
        _dept("OPS", 6),
    ]
    result = detect_duplicates(departments)

    resolutions = auto_resolve_all(result)
    cleaned = apply_resolutions(departments, resolutions)

    assert [record.code for record in cleaned] == ["S1", "ENG", "OPS"]
    assert [record.source_row for record in cleaned] == [2, 5, 6]
    assert cleaned[1].description == "dev dept"


def test_apply_resolutions_ignores_other_sheet():
    departments = [_dept("A", 2), _dept("B", 3)]
    positions = [
        PositionRecord(code="P", title="T", department_code="A", source_row=2),
        PositionRecord(code="P", title="T", department_code="A", source_row=3),
    ]
    resolutions = auto_resolve_all(detect_duplicates(departments, positions))

    assert apply_resolutions(departments, resolutions) == departments
    assert [record.source_row for record in apply_resolutions(positions, resolutions)] == [2]


def test_strategy_labels_cover_every_strategy():
    for strategy in ResolutionStrategy:
        assert get_strategy_label(strategy)
        assert get_strategy_description(strategy)
