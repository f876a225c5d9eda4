"""In-process stores: a dict-backed store and a dry-run wrapper.

No network calls are made. ``InMemoryStore`` backs tests and local
experiments; ``DryRunStore`` lets the CLI rehearse an import against the
real store's current contents without writing anything.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from ..error_taxonomy import BatchWriteError, StoreErrorKind
from ..models import EntityType
from .base import CodeId, InsertResult, OrgStore, code_column

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StoreCall:
    operation: str
    entity: EntityType
    codes: list[str]


def _new_id() -> str:
    return str(uuid.uuid4())


class InMemoryStore:
    """Dict-backed ``OrgStore``.

    ``fail_on_insert`` / ``fail_on_update`` hold codes whose writes should be
    rejected, which lets callers exercise partial-failure paths.
    """

    def __init__(
        self,
        *,
        fail_on_insert: Iterable[str] = (),
        fail_on_update: Iterable[str] = (),
    ) -> None:
        self._rows: dict[tuple[str, EntityType], dict[str, dict[str, Any]]] = {}
        self.fail_on_insert = set(fail_on_insert)
        self.fail_on_update = set(fail_on_update)
        self.calls: list[StoreCall] = []

    def _table(self, org_id: str, entity: EntityType) -> dict[str, dict[str, Any]]:
        return self._rows.setdefault((org_id, EntityType(entity)), {})

    def seed(self, org_id: str, entity: EntityType, rows: Iterable[Mapping[str, Any]]) -> dict[str, str]:
        """Insert pre-existing rows without recording a call; returns code -> id."""
        table = self._table(org_id, entity)
        column = code_column(entity)
        for row in rows:
            stored = dict(row)
            stored.setdefault("id", _new_id())
            table[stored[column]] = stored
        return {code: row["id"] for code, row in table.items()}

    def rows(self, org_id: str, entity: EntityType) -> dict[str, dict[str, Any]]:
        return {code: dict(row) for code, row in self._table(org_id, entity).items()}

    @property
    def write_calls(self) -> list[StoreCall]:
        return [call for call in self.calls if call.operation != "select"]

    def get_existing_codes(self, org_id: str, entity: EntityType) -> dict[str, str]:
        self.calls.append(StoreCall("select", EntityType(entity), []))
        return {code: row["id"] for code, row in self._table(org_id, entity).items()}

    def batch_insert(
        self, org_id: str, entity: EntityType, rows: Sequence[Mapping[str, Any]]
    ) -> InsertResult:
        column = code_column(entity)
        codes = [str(row[column]) for row in rows]
        self.calls.append(StoreCall("insert", EntityType(entity), codes))
        table = self._table(org_id, entity)

        rejected = [code for code in codes if code in self.fail_on_insert]
        if rejected:
            raise BatchWriteError(
                f"insert rejected for {', '.join(rejected)}",
                entity=EntityType(entity),
                codes=codes,
                store_kind=StoreErrorKind.UNKNOWN,
            )
        clashes = [code for code in codes if code in table] or sorted(
            {code for code in codes if codes.count(code) > 1}
        )
        if clashes:
            raise BatchWriteError(
                f'duplicate key value violates unique constraint on {column}: {", ".join(clashes)}',
                entity=EntityType(entity),
                codes=codes,
                store_kind=StoreErrorKind.CONSTRAINT,
            )

        returning: list[CodeId] = []
        for row in rows:
            stored = {**row, "organization_id": org_id, "id": _new_id()}
            table[stored[column]] = stored
            returning.append(CodeId(code=stored[column], id=stored["id"]))
        return InsertResult(affected_rows=len(returning), returning=returning)

    def update_by_code(
        self, org_id: str, entity: EntityType, code: str, changes: Mapping[str, Any]
    ) -> int:
        self.calls.append(StoreCall("update", EntityType(entity), [code]))
        if code in self.fail_on_update:
            raise BatchWriteError(
                f"update rejected for {code}",
                entity=EntityType(entity),
                codes=[code],
                store_kind=StoreErrorKind.UNKNOWN,
            )
        row = self._table(org_id, entity).get(code)
        if row is None:
            return 0
        row.update(changes)
        return 1


class DryRunStore:
    """Reads from ``inner``; simulates writes so nothing is persisted."""

    def __init__(self, inner: OrgStore) -> None:
        self.inner = inner
        self._simulated: dict[tuple[str, EntityType], dict[str, str]] = {}
        self.writes: list[StoreCall] = []
        self._inner_codes: dict[tuple[str, EntityType], dict[str, str]] = {}

    def get_existing_codes(self, org_id: str, entity: EntityType) -> dict[str, str]:
        existing = dict(self.inner.get_existing_codes(org_id, entity))
        self._inner_codes[(org_id, EntityType(entity))] = dict(existing)
        existing.update(self._simulated.get((org_id, EntityType(entity)), {}))
        return existing

    def batch_insert(
        self, org_id: str, entity: EntityType, rows: Sequence[Mapping[str, Any]]
    ) -> InsertResult:
        column = code_column(entity)
        simulated = self._simulated.setdefault((org_id, EntityType(entity)), {})
        returning = []
        for row in rows:
            code = str(row[column])
            simulated[code] = f"dry-run:{_new_id()}"
            returning.append(CodeId(code=code, id=simulated[code]))
        self.writes.append(StoreCall("insert", EntityType(entity), [item.code for item in returning]))
        logger.info("[dry-run] would insert %d %s row(s)", len(returning), EntityType(entity).value)
        return InsertResult(affected_rows=len(returning), returning=returning)

    def update_by_code(
        self, org_id: str, entity: EntityType, code: str, changes: Mapping[str, Any]
    ) -> int:
        self.writes.append(StoreCall("update", EntityType(entity), [code]))
        key = (org_id, EntityType(entity))
        if key not in self._inner_codes:
            self._inner_codes[key] = dict(self.inner.get_existing_codes(org_id, entity))
        known = code in self._simulated.get(key, {}) or code in self._inner_codes[key]
        logger.debug("[dry-run] would update %s %s with %s", EntityType(entity).value, code, sorted(changes))
        return 1 if known else 0
