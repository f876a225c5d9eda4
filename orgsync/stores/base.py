"""Backing store protocol for the import pipeline.

A store exposes exactly three operations, scoped by organization and entity
type. Row payloads use the store's column names (see ``CODE_COLUMNS``); the
store stamps ``organization_id`` itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from ..models import EntityType

CODE_COLUMNS: dict[EntityType, str] = {
    EntityType.DEPARTMENTS: "dept_code",
    EntityType.POSITIONS: "pos_code",
}


@dataclass(frozen=True, slots=True)
class CodeId:
    code: str
    id: str


@dataclass(frozen=True)
class InsertResult:
    """Outcome of a batch insert: row count plus the generated ids per code."""

    affected_rows: int
    returning: list[CodeId] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "affected_rows": self.affected_rows,
            "returning": [{"code": item.code, "id": item.id} for item in self.returning],
        }


@runtime_checkable
class OrgStore(Protocol):
    """Protocol for organization stores.

    Implementations raise ``StoreError`` (reads) or ``BatchWriteError``
    (writes) with a classified ``StoreErrorKind``; raw client exceptions
    must not escape.
    """

    def get_existing_codes(self, org_id: str, entity: EntityType) -> dict[str, str]:
        """Return code -> id for every existing record of ``entity``."""
        ...

    def batch_insert(
        self, org_id: str, entity: EntityType, rows: Sequence[Mapping[str, Any]]
    ) -> InsertResult:
        """Insert ``rows`` in a single write."""
        ...

    def update_by_code(
        self, org_id: str, entity: EntityType, code: str, changes: Mapping[str, Any]
    ) -> int:
        """Update one record by natural key; returns affected rows."""
        ...


def code_column(entity: EntityType) -> str:
    return CODE_COLUMNS[EntityType(entity)]
