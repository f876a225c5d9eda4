"""Hasura-style GraphQL implementation of ``OrgStore`` over httpx.

Every response is checked the same way: non-200 status, a non-empty
``errors`` array, or a missing ``data`` object all raise a classified
``StoreError``.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

import httpx

from ..error_taxonomy import BatchWriteError, StoreError, StoreErrorKind
from ..models import EntityType
from .base import CodeId, InsertResult, code_column
from .retry import call_with_retry

logger = logging.getLogger(__name__)

_TYPES: dict[EntityType, str] = {
    EntityType.DEPARTMENTS: "departments",
    EntityType.POSITIONS: "positions",
}


def existing_codes_query(entity: EntityType) -> str:
    table, column = _TYPES[entity], code_column(entity)
    return f"""
  query GetExisting_{table}($organization_id: uuid!) {{
    {table}(where: {{ organization_id: {{ _eq: $organization_id }} }}) {{
      id
      {column}
    }}
  }}
"""


def insert_mutation(entity: EntityType) -> str:
    table, column = _TYPES[entity], code_column(entity)
    return f"""
  mutation Insert_{table}($objects: [{table}_insert_input!]!) {{
    insert_{table}(objects: $objects) {{
      affected_rows
      returning {{
        id
        {column}
      }}
    }}
  }}
"""


def update_mutation(entity: EntityType) -> str:
    table, column = _TYPES[entity], code_column(entity)
    return f"""
  mutation Update_{table}($organization_id: uuid!, $code: String!, $changes: {table}_set_input!) {{
    update_{table}(
      where: {{ organization_id: {{ _eq: $organization_id }}, {column}: {{ _eq: $code }} }}
      _set: $changes
    ) {{
      affected_rows
    }}
  }}
"""


def _error_text(errors: Sequence[Mapping[str, Any]]) -> str:
    first = errors[0] if errors else {}
    message = str(first.get("message") or "GraphQL error")
    code = (first.get("extensions") or {}).get("code")
    return f"{message} ({code})" if code else message


class GraphQLOrgStore:
    """``OrgStore`` for a Hasura-compatible GraphQL endpoint."""

    def __init__(
        self,
        url: str,
        *,
        admin_secret: str | None = None,
        token: str | None = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
        client: httpx.Client | None = None,
    ) -> None:
        if not url:
            raise ValueError("GraphQL url is required")
        headers = {"Content-Type": "application/json"}
        if admin_secret:
            headers["x-hasura-admin-secret"] = admin_secret
        elif token:
            headers["Authorization"] = f"Bearer {token}"
        self.url = url
        self.max_attempts = max_attempts
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout))
        self._headers = headers

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GraphQLOrgStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _post(self, query: str, variables: Mapping[str, Any]) -> dict[str, Any]:
        try:
            response = self._client.post(
                self.url, json={"query": query, "variables": dict(variables)}, headers=self._headers
            )
        except httpx.TimeoutException as exc:
            raise StoreError(f"GraphQL request timed out: {exc}", store_kind=StoreErrorKind.TIMEOUT) from exc
        except httpx.TransportError as exc:
            raise StoreError(f"GraphQL endpoint unreachable: {exc}", store_kind=StoreErrorKind.NETWORK) from exc

        if response.status_code != 200:
            raise StoreError.from_response(
                f"GraphQL request failed ({response.status_code}): {response.text[:500]}",
                response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise StoreError("GraphQL response was not JSON", store_kind=StoreErrorKind.SCHEMA) from exc
        errors = body.get("errors") or []
        if errors:
            raise StoreError.from_response(_error_text(errors))
        data = body.get("data")
        if not isinstance(data, dict):
            raise StoreError("GraphQL response returned no data", store_kind=StoreErrorKind.SCHEMA)
        return data

    def _execute(self, query: str, variables: Mapping[str, Any]) -> dict[str, Any]:
        return call_with_retry(lambda: self._post(query, variables), self.max_attempts)

    def _mutate(
        self, query: str, variables: Mapping[str, Any], *, entity: EntityType, codes: Sequence[str]
    ) -> dict[str, Any]:
        def attempt() -> dict[str, Any]:
            try:
                return self._post(query, variables)
            except StoreError as exc:
                raise BatchWriteError.wrap(exc, entity=entity, codes=codes) from exc

        return call_with_retry(attempt, self.max_attempts, for_write=True)

    def get_existing_codes(self, org_id: str, entity: EntityType) -> dict[str, str]:
        entity = EntityType(entity)
        data = self._execute(existing_codes_query(entity), {"organization_id": org_id})
        column = code_column(entity)
        return {str(row[column]): str(row["id"]) for row in data.get(_TYPES[entity]) or []}

    def batch_insert(
        self, org_id: str, entity: EntityType, rows: Sequence[Mapping[str, Any]]
    ) -> InsertResult:
        entity = EntityType(entity)
        if not rows:
            return InsertResult(affected_rows=0)
        column = code_column(entity)
        objects = [{**row, "organization_id": org_id} for row in rows]
        codes = [str(row[column]) for row in rows]
        data = self._mutate(insert_mutation(entity), {"objects": objects}, entity=entity, codes=codes)
        payload = data.get(f"insert_{_TYPES[entity]}") or {}
        returning = [
            CodeId(code=str(item[column]), id=str(item["id"])) for item in payload.get("returning") or []
        ]
        return InsertResult(affected_rows=int(payload.get("affected_rows") or 0), returning=returning)

    def update_by_code(
        self, org_id: str, entity: EntityType, code: str, changes: Mapping[str, Any]
    ) -> int:
        entity = EntityType(entity)
        data = self._mutate(
            update_mutation(entity),
            {"organization_id": org_id, "code": code, "changes": dict(changes)},
            entity=entity,
            codes=[code],
        )
        payload = data.get(f"update_{_TYPES[entity]}") or {}
        return int(payload.get("affected_rows") or 0)
