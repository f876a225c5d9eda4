"""Record models and result containers shared by the import pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

_BLANK_PARENT_MARKERS = {"", "-"}


class EntityType(str, Enum):
    DEPARTMENTS = "departments"
    POSITIONS = "positions"


class OperationType(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"


class ResolutionStrategy(str, Enum):
    KEEP_FIRST = "KEEP_FIRST"
    KEEP_LAST = "KEEP_LAST"
    MERGE = "MERGE"
    KEEP_ALL = "KEEP_ALL"


def _clean_optional_code(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return None if stripped in _BLANK_PARENT_MARKERS else stripped
    return value


class _RecordBase(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    ENTITY: ClassVar[EntityType]
    OPTIONAL_FIELDS: ClassVar[tuple[str, ...]] = ()
    NON_SIGNIFICANT_FIELDS: ClassVar[frozenset[str]] = frozenset({"source_row", "operation"})

    code: str = Field(min_length=1)
    source_row: int = Field(1, ge=1)
    operation: Optional[OperationType] = None

    @property
    def dependency_code(self) -> Optional[str]:
        raise NotImplementedError

    def significant_fields(self) -> Dict[str, Any]:
        """Field values that decide whether two rows describe the same entity."""
        return self.model_dump(exclude=set(self.NON_SIGNIFICANT_FIELDS))

    def completeness(self) -> int:
        """Number of populated optional fields."""
        score = 0
        for name in self.OPTIONAL_FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, (str, dict, list)) and not value:
                continue
            score += 1
        return score

    def with_operation(self, operation: OperationType):
        return self.model_copy(update={"operation": operation})


class DepartmentRecord(_RecordBase):
    ENTITY: ClassVar[EntityType] = EntityType.DEPARTMENTS
    OPTIONAL_FIELDS: ClassVar[tuple[str, ...]] = ("parent_code", "description", "metadata")

    name: str = Field(min_length=1)
    parent_code: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("parent_code", mode="before")
    @classmethod
    def _normalize_parent(cls, value: Any) -> Any:
        return _clean_optional_code(value)

    @property
    def dependency_code(self) -> Optional[str]:
        return self.parent_code


class PositionRecord(_RecordBase):
    ENTITY: ClassVar[EntityType] = EntityType.POSITIONS
    OPTIONAL_FIELDS: ClassVar[tuple[str, ...]] = ("reports_to_code",)

    title: str = Field(min_length=1)
    department_code: str = Field(min_length=1)
    reports_to_code: Optional[str] = None
    is_manager: bool = False
    incumbents_count: int = Field(0, ge=0)
    is_active: bool = True

    @field_validator("reports_to_code", mode="before")
    @classmethod
    def _normalize_reports_to(cls, value: Any) -> Any:
        return _clean_optional_code(value)

    @property
    def dependency_code(self) -> Optional[str]:
        return self.reports_to_code


EntityRecord = Union[DepartmentRecord, PositionRecord]


# ---------------------------------------------------------------------------
# Duplicate detection
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class DuplicateCandidate:
    record: EntityRecord
    order: int
    completeness: int
    differences: List[str] = field(default_factory=list)

    @property
    def source_row(self) -> int:
        return self.record.source_row


@dataclass(slots=True)
class DuplicateGroup:
    sheet: EntityType
    key: str
    candidates: List[DuplicateCandidate]
    recommended_strategy: ResolutionStrategy
    is_auto_resolvable: bool
    reason: str = ""

    @property
    def source_rows(self) -> List[int]:
        return [candidate.source_row for candidate in self.candidates]


@dataclass(slots=True)
class SheetDuplicates:
    sheet: EntityType
    groups: List[DuplicateGroup] = field(default_factory=list)

    @property
    def total_duplicates(self) -> int:
        return sum(len(group.candidates) - 1 for group in self.groups)

    @property
    def affected_rows(self) -> int:
        return sum(len(group.candidates) for group in self.groups)


@dataclass(slots=True)
class DetectionResult:
    departments: SheetDuplicates
    positions: SheetDuplicates

    @property
    def groups(self) -> List[DuplicateGroup]:
        return [*self.departments.groups, *self.positions.groups]

    @property
    def total_duplicates(self) -> int:
        return self.departments.total_duplicates + self.positions.total_duplicates

    @property
    def total_affected_rows(self) -> int:
        return self.departments.affected_rows + self.positions.affected_rows

    @property
    def auto_resolvable(self) -> int:
        return sum(1 for group in self.groups if group.is_auto_resolvable)

    @property
    def has_duplicates(self) -> bool:
        return bool(self.groups)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total_duplicates": self.total_duplicates,
            "total_affected_rows": self.total_affected_rows,
            "auto_resolvable": self.auto_resolvable,
            "groups": [
                {
                    "sheet": group.sheet.value,
                    "key": group.key,
                    "rows": group.source_rows,
                    "strategy": group.recommended_strategy.value,
                    "auto_resolvable": group.is_auto_resolvable,
                    "reason": group.reason,
                }
                for group in self.groups
            ],
        }


@dataclass(slots=True)
class DuplicateResolution:
    sheet: EntityType
    key: str
    strategy: ResolutionStrategy
    keep_rows: List[int]
    remove_rows: List[int]
    merged_data: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ImportFailure:
    entity: EntityType
    code: str
    reason: str
    source_row: Optional[int] = None
    error_code: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["entity"] = self.entity.value
        return payload


@dataclass(slots=True)
class ImportResult:
    departments_created: int = 0
    departments_updated: int = 0
    positions_created: int = 0
    positions_updated: int = 0
    total_departments: int = 0
    total_positions: int = 0
    failures: List[ImportFailure] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "departments_created": self.departments_created,
            "departments_updated": self.departments_updated,
            "positions_created": self.positions_created,
            "positions_updated": self.positions_updated,
            "total_departments": self.total_departments,
            "total_positions": self.total_positions,
            "failures": [failure.as_dict() for failure in self.failures],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    stage: str
    processed: int
    total: int
    message: str = ""

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 100.0
        return round(self.processed * 100.0 / self.total, 1)
