"""Supabase (PostgREST) implementation of ``OrgStore``."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Sequence, TypeVar

import httpx
from postgrest.exceptions import APIError

from ..error_taxonomy import BatchWriteError, StoreError, StoreErrorKind
from ..models import EntityType
from .base import CodeId, InsertResult, code_column
from .retry import call_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

TABLES: dict[EntityType, str] = {
    EntityType.DEPARTMENTS: "departments",
    EntityType.POSITIONS: "positions",
}
PAGE_SIZE = 1000


def _api_error_message(exc: APIError) -> str:
    parts = [getattr(exc, "message", None), getattr(exc, "code", None), getattr(exc, "details", None)]
    text = " ".join(str(part) for part in parts if part)
    return text or str(exc)


def _to_store_error(exc: Exception, *, write: bool, entity: EntityType, codes: Sequence[str]) -> StoreError:
    if isinstance(exc, httpx.TimeoutException):
        kind, message, status = StoreErrorKind.TIMEOUT, f"Supabase request timed out: {exc}", None
    elif isinstance(exc, httpx.TransportError):
        kind, message, status = StoreErrorKind.NETWORK, f"Supabase unreachable: {exc}", None
    else:
        message = _api_error_message(exc) if isinstance(exc, APIError) else str(exc)
        status = getattr(getattr(exc, "response", None), "status_code", None)
        error = StoreError.from_response(message, status)
        kind = error.store_kind
    if write:
        return BatchWriteError(message, entity=entity, codes=codes, store_kind=kind, status_code=status)
    return StoreError(message, store_kind=kind, status_code=status)


class SupabaseOrgStore:
    """``OrgStore`` over a supabase-py client.

    Usage:
        store = SupabaseOrgStore(create_supabase_client())
        store.get_existing_codes(org_id, EntityType.DEPARTMENTS)
    """

    def __init__(self, client: Any, *, max_attempts: int = 3, page_size: int = PAGE_SIZE) -> None:
        self.client = client
        self.max_attempts = max_attempts
        self.page_size = page_size

    def _run(
        self,
        func: Callable[[], T],
        *,
        write: bool,
        entity: EntityType,
        codes: Sequence[str] = (),
    ) -> T:
        def attempt() -> T:
            try:
                return func()
            except (APIError, httpx.HTTPError) as exc:
                raise _to_store_error(exc, write=write, entity=entity, codes=codes) from exc

        return call_with_retry(attempt, self.max_attempts, for_write=write)

    def get_existing_codes(self, org_id: str, entity: EntityType) -> dict[str, str]:
        entity = EntityType(entity)
        column = code_column(entity)
        table = TABLES[entity]
        codes: dict[str, str] = {}
        start = 0
        while True:
            end = start + self.page_size - 1

            def fetch_page(start: int = start, end: int = end) -> list[dict[str, Any]]:
                response = (
                    self.client.table(table)
                    .select(f"id, {column}")
                    .eq("organization_id", org_id)
                    .order(column)
                    .range(start, end)
                    .execute()
                )
                return list(getattr(response, "data", None) or [])

            page = self._run(fetch_page, write=False, entity=entity)
            for row in page:
                codes[str(row[column])] = str(row["id"])
            if len(page) < self.page_size:
                break
            start += self.page_size
        logger.debug("Fetched %d existing %s for org %s", len(codes), table, org_id)
        return codes

    def batch_insert(
        self, org_id: str, entity: EntityType, rows: Sequence[Mapping[str, Any]]
    ) -> InsertResult:
        entity = EntityType(entity)
        if not rows:
            return InsertResult(affected_rows=0)
        column = code_column(entity)
        payload = [{**row, "organization_id": org_id} for row in rows]
        codes = [str(row[column]) for row in rows]

        def insert() -> list[dict[str, Any]]:
            response = (
                self.client.table(TABLES[entity])
                .insert(payload, returning="representation")  # type: ignore[arg-type]
                .execute()
            )
            return list(getattr(response, "data", None) or [])

        data = self._run(insert, write=True, entity=entity, codes=codes)
        returning = [CodeId(code=str(row[column]), id=str(row["id"])) for row in data if column in row]
        return InsertResult(affected_rows=len(data), returning=returning)

    def update_by_code(
        self, org_id: str, entity: EntityType, code: str, changes: Mapping[str, Any]
    ) -> int:
        entity = EntityType(entity)
        column = code_column(entity)

        def update() -> list[dict[str, Any]]:
            response = (
                self.client.table(TABLES[entity])
                .update(dict(changes))
                .eq("organization_id", org_id)
                .eq(column, code)
                .execute()
            )
            return list(getattr(response, "data", None) or [])

        data = self._run(update, write=True, entity=entity, codes=[code])
        return len(data)
