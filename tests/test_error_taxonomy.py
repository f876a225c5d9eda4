from __future__ import annotations

import pytest

from orgsync.error_taxonomy import (
    ERR_STORE_CONSTRAINT,
    BatchWriteError,
    DependencyResolutionError,
    ErrorCategory,
    StoreError,
    StoreErrorKind,
    classify_store_error,
    is_retryable,
)
from orgsync.models import EntityType


@pytest.mark.parametrize(
    "message, status, expected",
    [
        ('duplicate key value violates unique constraint "departments_dept_code_key"', None, StoreErrorKind.CONSTRAINT),
        ("Uniqueness violation. duplicate key value (constraint-violation)", None, StoreErrorKind.CONSTRAINT),
        ("insert or update violates foreign key constraint", 400, StoreErrorKind.CONSTRAINT),
        ("Could not verify JWT: JWTExpired", None, StoreErrorKind.AUTH),
        ("anything", 401, StoreErrorKind.AUTH),
        ("Too Many Requests", None, StoreErrorKind.RATE_LIMIT),
        ("", 429, StoreErrorKind.RATE_LIMIT),
        ("canceling statement due to statement timeout", None, StoreErrorKind.TIMEOUT),
        ("field 'foo' not found in type: 'departments_insert_input' (validation-failed)", None, StoreErrorKind.SCHEMA),
        ("Connection reset by peer", None, StoreErrorKind.NETWORK),
        ("Bad gateway", 502, StoreErrorKind.NETWORK),
        ("something odd", None, StoreErrorKind.UNKNOWN),
        (None, None, StoreErrorKind.UNKNOWN),
    ],
)
def test_classify_store_error(message, status, expected):
    assert classify_store_error(message, status) is expected


@pytest.mark.parametrize(
    "kind, retryable",
    [
        (StoreErrorKind.NETWORK, True),
        (StoreErrorKind.TIMEOUT, True),
        (StoreErrorKind.RATE_LIMIT, True),
        (StoreErrorKind.CONSTRAINT, False),
        (StoreErrorKind.AUTH, False),
        (StoreErrorKind.UNKNOWN, False),
    ],
)
def test_only_transient_kinds_are_retryable(kind, retryable):
    error = StoreError("boom", store_kind=kind)

    assert error.retryable is retryable
    assert is_retryable(error) is retryable


def test_is_retryable_ignores_other_exceptions():
    assert is_retryable(RuntimeError("connection reset")) is False


def test_store_error_from_response_sets_code():
    error = StoreError.from_response("duplicate key value violates unique constraint", 409)

    assert error.store_kind is StoreErrorKind.CONSTRAINT
    assert error.error_code is ERR_STORE_CONSTRAINT
    assert error.kind == ErrorCategory.STORE.value.lower()
    assert error.to_log_dict()["error_code"] == "ORG-STORE-120"


def test_batch_write_error_wrap_keeps_classification():
    original = StoreError("rate limit", store_kind=StoreErrorKind.RATE_LIMIT, status_code=429)

    wrapped = BatchWriteError.wrap(original, entity=EntityType.POSITIONS, codes=["P1"])

    assert isinstance(wrapped, BatchWriteError)
    assert wrapped.store_kind is StoreErrorKind.RATE_LIMIT
    assert wrapped.status_code == 429
    assert wrapped.codes == ["P1"]
    assert wrapped.__cause__ is original


def test_dependency_error_message_lists_unresolved_codes():
    error = DependencyResolutionError({"B": "A", "A": "B"}, passes=1)

    assert "A->B, B->A" in str(error)
    assert error.partial_result is None
    assert error.kind == "dependency"
