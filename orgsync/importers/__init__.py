"""Parsing, validation, duplicate handling and execution of organization imports."""

from .classifier import assign_operations, classify, partition
from .duplicates import apply_resolutions, auto_resolve_all, detect_duplicates, resolve_duplicate
from .executor import ImportExecutor, execute_import
from .hierarchy import MAX_PASSES, HierarchyResult, create_in_hierarchy

__all__ = [
    "MAX_PASSES",
    "HierarchyResult",
    "ImportExecutor",
    "apply_resolutions",
    "assign_operations",
    "auto_resolve_all",
    "classify",
    "create_in_hierarchy",
    "detect_duplicates",
    "execute_import",
    "partition",
    "resolve_duplicate",
]
