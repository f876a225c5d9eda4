"""
orgsync - Error Taxonomy

Every failure the import pipeline surfaces carries a stable error code so it
can be aggregated in logs and referenced by operators.

Error Code Format: ORG-{CATEGORY}-{NUMBER}
- CATEGORY = CONFIG, STORE, VALIDATION, DEPENDENCY, INTERNAL
- NUMBER = 3-digit error number

Categories:
- CONFIG (001-099): Configuration and environment errors
- STORE (100-199): Backing store errors (network, auth, constraints)
- VALIDATION (500-599): Input rejected before any write
- DEPENDENCY (600-699): Hierarchy could not be ordered
- INTERNAL (900-999): Unexpected internal errors

Backend error bodies are inspected exactly once, in ``classify_store_error``;
everything downstream works with ``StoreErrorKind``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from .models import EntityType, ImportResult

logger = logging.getLogger(__name__)


# =============================================================================
# ERROR CODES
# =============================================================================


class ErrorCategory(str, Enum):
    """Error category for classification."""

    CONFIG = "CONFIG"
    STORE = "STORE"
    VALIDATION = "VALIDATION"
    DEPENDENCY = "DEPENDENCY"
    INTERNAL = "INTERNAL"


@dataclass(frozen=True)
class ErrorCode:
    """Immutable error code definition."""

    code: str
    category: ErrorCategory
    message: str
    retryable: bool = False

    def __str__(self) -> str:
        return self.code


ERR_CONFIG_MISSING_ENV = ErrorCode("ORG-CONFIG-001", ErrorCategory.CONFIG, "Required environment variable is missing")

ERR_STORE_NETWORK = ErrorCode("ORG-STORE-100", ErrorCategory.STORE, "Backing store unreachable", retryable=True)
ERR_STORE_TIMEOUT = ErrorCode("ORG-STORE-101", ErrorCategory.STORE, "Backing store request timed out", retryable=True)
ERR_STORE_RATE_LIMIT = ErrorCode("ORG-STORE-102", ErrorCategory.STORE, "Backing store rate limit exceeded", retryable=True)
ERR_STORE_AUTH = ErrorCode("ORG-STORE-110", ErrorCategory.STORE, "Backing store rejected credentials")
ERR_STORE_CONSTRAINT = ErrorCode("ORG-STORE-120", ErrorCategory.STORE, "Backing store constraint violation")
ERR_STORE_SCHEMA = ErrorCode("ORG-STORE-130", ErrorCategory.STORE, "Backing store rejected the request shape")
ERR_STORE_NOT_FOUND = ErrorCode("ORG-STORE-140", ErrorCategory.STORE, "Record not found in backing store")
ERR_STORE_UNKNOWN = ErrorCode("ORG-STORE-199", ErrorCategory.STORE, "Backing store request failed")

ERR_VALIDATION_REFERENCES = ErrorCode("ORG-VALIDATION-500", ErrorCategory.VALIDATION, "Import batch failed validation")
ERR_VALIDATION_WORKBOOK = ErrorCode("ORG-VALIDATION-510", ErrorCategory.VALIDATION, "Workbook is missing required sheets or columns")

ERR_DEPENDENCY_UNRESOLVABLE = ErrorCode(
    "ORG-DEPENDENCY-600", ErrorCategory.DEPENDENCY, "Records reference parents that can never be created"
)
ERR_DEPENDENCY_PASS_LIMIT = ErrorCode(
    "ORG-DEPENDENCY-601", ErrorCategory.DEPENDENCY, "Hierarchy deeper than the pass limit"
)

ERR_INTERNAL = ErrorCode("ORG-INTERNAL-900", ErrorCategory.INTERNAL, "Unexpected internal error")


# =============================================================================
# STORE ERROR CLASSIFICATION
# =============================================================================


class StoreErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    CONSTRAINT = "constraint"
    SCHEMA = "schema"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"

    @property
    def error_code(self) -> ErrorCode:
        return _KIND_CODES[self]

    @property
    def retryable(self) -> bool:
        return self.error_code.retryable


_KIND_CODES: dict[StoreErrorKind, ErrorCode] = {
    StoreErrorKind.NETWORK: ERR_STORE_NETWORK,
    StoreErrorKind.TIMEOUT: ERR_STORE_TIMEOUT,
    StoreErrorKind.RATE_LIMIT: ERR_STORE_RATE_LIMIT,
    StoreErrorKind.AUTH: ERR_STORE_AUTH,
    StoreErrorKind.CONSTRAINT: ERR_STORE_CONSTRAINT,
    StoreErrorKind.SCHEMA: ERR_STORE_SCHEMA,
    StoreErrorKind.NOT_FOUND: ERR_STORE_NOT_FOUND,
    StoreErrorKind.UNKNOWN: ERR_STORE_UNKNOWN,
}

# Ordered: first match wins.
_MESSAGE_MARKERS: tuple[tuple[StoreErrorKind, tuple[str, ...]], ...] = (
    (StoreErrorKind.TIMEOUT, ("timed out", "timeout", "statement_timeout")),
    (StoreErrorKind.RATE_LIMIT, ("rate limit", "too many requests")),
    (StoreErrorKind.AUTH, ("jwt", "invalid-jwt", "unauthorized", "permission denied", "access-denied")),
    (
        StoreErrorKind.CONSTRAINT,
        (
            "duplicate key",
            "violates",
            "constraint-violation",
            "uniqueness violation",
            "foreign key",
            "23505",
            "23503",
        ),
    ),
    (StoreErrorKind.SCHEMA, ("not found in type", "validation-failed", "parse-failed", "pgrst204", "could not find")),
    (StoreErrorKind.NETWORK, ("connection", "connect", "network", "dns", "ssl")),
    (StoreErrorKind.NOT_FOUND, ("not found", "no rows")),
)

_TRANSIENT_STATUSES = {500, 502, 503, 504}


def classify_store_error(message: str | None, status_code: int | None = None) -> StoreErrorKind:
    """Map a raw backend error message (and HTTP status, if any) to a closed kind."""

    if status_code == 429:
        return StoreErrorKind.RATE_LIMIT
    if status_code in (401, 403):
        return StoreErrorKind.AUTH
    if status_code == 409:
        return StoreErrorKind.CONSTRAINT
    if status_code in (408, 504):
        return StoreErrorKind.TIMEOUT

    lowered = (message or "").lower()
    for kind, markers in _MESSAGE_MARKERS:
        if any(marker in lowered for marker in markers):
            return kind

    if status_code in _TRANSIENT_STATUSES:
        return StoreErrorKind.NETWORK
    if status_code == 404:
        return StoreErrorKind.NOT_FOUND
    return StoreErrorKind.UNKNOWN


# =============================================================================
# EXCEPTIONS
# =============================================================================


class ReconciliationError(RuntimeError):
    """Base class for failures raised by the import pipeline."""

    error_code: ErrorCode = ERR_INTERNAL

    def __init__(self, message: str, *, partial_result: ImportResult | None = None) -> None:
        super().__init__(message)
        self.partial_result = partial_result

    @property
    def kind(self) -> str:
        return self.error_code.category.value.lower()

    def to_log_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code.code,
            "error_category": self.error_code.category.value,
            "error_message": str(self),
            "retryable": self.error_code.retryable,
        }


@dataclass(frozen=True, slots=True)
class ReferenceIssue:
    """A single reason an import batch was rejected before any write."""

    entity: EntityType
    code: str
    field: str
    message: str
    source_row: int | None = None
    value: str | None = None

    def __str__(self) -> str:
        row = f"row {self.source_row}: " if self.source_row is not None else ""
        return f"{self.entity.value} {row}{self.code}.{self.field}: {self.message}"


class ImportValidationError(ReconciliationError):
    error_code = ERR_VALIDATION_REFERENCES

    def __init__(self, issues: Sequence[ReferenceIssue], message: str | None = None) -> None:
        self.issues = list(issues)
        summary = message or f"Import rejected: {len(self.issues)} validation issue(s)"
        if self.issues:
            preview = "; ".join(str(issue) for issue in self.issues[:5])
            summary = f"{summary} ({preview})"
        super().__init__(summary)


class DependencyResolutionError(ReconciliationError):
    """Records whose dependency never became available within the pass budget."""

    error_code = ERR_DEPENDENCY_UNRESOLVABLE

    def __init__(
        self,
        unresolved: Mapping[str, str | None],
        *,
        passes: int,
        created_count: int = 0,
        pass_limit_exhausted: bool = False,
    ) -> None:
        self.unresolved = dict(unresolved)
        self.passes = passes
        self.created_count = created_count
        self.pass_limit_exhausted = pass_limit_exhausted
        if pass_limit_exhausted:
            self.error_code = ERR_DEPENDENCY_PASS_LIMIT
            reason = f"pass limit of {passes} reached"
        else:
            reason = f"no eligible records in pass {passes}"
        pairs = ", ".join(f"{code}->{parent}" for code, parent in sorted(self.unresolved.items()))
        super().__init__(f"Could not resolve hierarchy ({reason}); unresolved: {pairs}")


class StoreError(ReconciliationError):
    """A backing store call failed; ``store_kind`` says how."""

    def __init__(
        self,
        message: str,
        *,
        store_kind: StoreErrorKind = StoreErrorKind.UNKNOWN,
        status_code: int | None = None,
        partial_result: ImportResult | None = None,
    ) -> None:
        super().__init__(message, partial_result=partial_result)
        self.store_kind = store_kind
        self.status_code = status_code
        self.error_code = store_kind.error_code

    @property
    def retryable(self) -> bool:
        return self.store_kind.retryable

    @classmethod
    def from_response(cls, message: str, status_code: int | None = None, **kwargs: Any) -> "StoreError":
        return cls(
            message,
            store_kind=classify_store_error(message, status_code),
            status_code=status_code,
            **kwargs,
        )


class BatchWriteError(StoreError):
    """A write (batch insert or single update) was rejected by the store."""

    def __init__(
        self,
        message: str,
        *,
        entity: EntityType | None = None,
        codes: Sequence[str] = (),
        created_count: int = 0,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.entity = entity
        self.codes = list(codes)
        self.created_count = created_count

    @classmethod
    def wrap(cls, exc: StoreError, *, entity: EntityType, codes: Sequence[str]) -> "BatchWriteError":
        if isinstance(exc, BatchWriteError):
            exc.entity = exc.entity or entity
            exc.codes = exc.codes or list(codes)
            return exc
        wrapped = cls(str(exc), entity=entity, codes=codes, store_kind=exc.store_kind, status_code=exc.status_code)
        wrapped.__cause__ = exc
        return wrapped


def is_retryable(exc: BaseException) -> bool:
    """Predicate used by tenacity: only transient store failures are retried."""

    return isinstance(exc, StoreError) and exc.retryable


class WorkbookFormatError(ReconciliationError):
    """The input file cannot be read as an import workbook."""

    error_code = ERR_VALIDATION_WORKBOOK


class ConfigurationError(ReconciliationError):
    """Required settings for the selected backend are missing or invalid."""

    error_code = ERR_CONFIG_MISSING_ENV
