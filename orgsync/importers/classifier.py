"""CREATE/UPDATE classification against the codes already in the store."""

from __future__ import annotations

from typing import Collection, List, Sequence, Tuple, TypeVar

from ..models import EntityRecord, OperationType

R = TypeVar("R", bound=EntityRecord)


def classify(record: EntityRecord, existing_codes: Collection[str]) -> OperationType:
    return OperationType.UPDATE if record.code in existing_codes else OperationType.CREATE


def assign_operations(records: Sequence[R], existing_codes: Collection[str]) -> List[R]:
    """Return copies of ``records`` with ``operation`` set."""
    return [record.with_operation(classify(record, existing_codes)) for record in records]


def partition(records: Sequence[R]) -> Tuple[List[R], List[R]]:
    creates: List[R] = []
    updates: List[R] = []
    for record in records:
        if record.operation is OperationType.CREATE:
            creates.append(record)
        elif record.operation is OperationType.UPDATE:
            updates.append(record)
        else:
            raise ValueError(f"{record.ENTITY.value} {record.code!r} has no operation assigned")
    return creates, updates
