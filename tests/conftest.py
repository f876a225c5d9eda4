"""
tests/conftest.py

Shared fixtures for the orgsync test suite. Nothing here talks to a real
store: executor and CLI tests run against ``InMemoryStore``.
"""

from __future__ import annotations

from typing import Any, Callable, Iterator

import pytest

from orgsync.core_config import reset_settings
from orgsync.models import DepartmentRecord, PositionRecord
from orgsync.stores.memory import InMemoryStore

ORG_ID = "00000000-0000-0000-0000-0000000000aa"


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "integration: marks tests as requiring a live Supabase or GraphQL endpoint",
    )


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in (
        "ORGSYNC_BACKEND",
        "SUPABASE_URL",
        "SUPABASE_SERVICE_ROLE_KEY",
        "GRAPHQL_URL",
        "GRAPHQL_ADMIN_SECRET",
        "GRAPHQL_TOKEN",
        "ORGSYNC_MAX_PASSES",
        "ORGSYNC_WRITE_RETRIES",
        "ORGSYNC_HTTP_TIMEOUT",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def org_id() -> str:
    return ORG_ID


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def make_department() -> Callable[..., DepartmentRecord]:
    rows = iter(range(2, 10_000))

    def _make(code: str, parent: str | None = None, **fields: Any) -> DepartmentRecord:
        fields.setdefault("name", f"Department {code}")
        fields.setdefault("source_row", next(rows))
        return DepartmentRecord(code=code, parent_code=parent, **fields)

    return _make


@pytest.fixture
def make_position() -> Callable[..., PositionRecord]:
    rows = iter(range(2, 10_000))

    def _make(code: str, department: str, reports_to: str | None = None, **fields: Any) -> PositionRecord:
        fields.setdefault("title", f"Position {code}")
        fields.setdefault("source_row", next(rows))
        return PositionRecord(code=code, department_code=department, reports_to_code=reports_to, **fields)

    return _make
