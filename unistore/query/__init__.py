"""
Query model for unistore.

This module provides the store-independent query description and its
compilation:
- QueryFilter and friends: the recursive filter model
- compile_filter(): QueryFilter -> native Mongo-style mapping
- matches() and cursor helpers: evaluate native filters in process

Invariants:
    - Compilation is deterministic and side-effect free
    - Cursor options (page, limit, sort, fields) never enter the predicate

How to change safely:
    - New operators must be added to OPERATORS, the matcher and every engine
    - Keep the per-field semantics of ``not`` unless all callers are migrated
"""

from .compiler import compile_filter, get_query_conditions_by_unique_indexes
from .matcher import (
    MISSING,
    apply_pagination,
    apply_projection,
    apply_sort,
    matches,
    resolve_path,
    values_equal,
)
from .types import (
    OPERATORS,
    FieldsOptions,
    QueryCondition,
    QueryConditionOperators,
    QueryFilter,
    SortOptions,
    is_operator_set,
)

__all__ = [
    # Model
    "QueryFilter",
    "QueryCondition",
    "QueryConditionOperators",
    "SortOptions",
    "FieldsOptions",
    "OPERATORS",
    "is_operator_set",
    # Compilation
    "compile_filter",
    "get_query_conditions_by_unique_indexes",
    # Evaluation
    "matches",
    "resolve_path",
    "values_equal",
    "apply_sort",
    "apply_pagination",
    "apply_projection",
    "MISSING",
]
