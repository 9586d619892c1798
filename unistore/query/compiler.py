"""
QueryFilter compilation into the engine-native filter.

The native form is a Mongo-style mapping:

    {"name": "Alice", "age": {"$gte": 18}, "$or": [{...}, {...}]}

Compilation rules, applied depth first:
    1. conditions: the first key of each condition is written onto the
       result; a later condition on the same field overwrites an earlier one
    2. and: each branch is compiled and shallow-merged (branch wins)
    3. or: non-empty lists become a "$or" list of compiled branches
    4. not: every field of the compiled sub-filter is written as {"$ne": value}

``not`` negates field by field, not the filter as a whole: negating an
``or`` yields {"$or": {"$ne": [...]}} rather than an ``and`` of negations.
Engines reject that shape with InvalidFilterError. Callers wanting a logical
negation should negate each condition explicitly.

Invariants:
    - compile_filter() is pure: same input, structurally equal output
    - Output never aliases values held by the input filter
    - page/limit/sort/fields are never part of the native predicate
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..result import Result
from .matcher import MISSING, resolve_path
from .types import QueryCondition, QueryConditionOperators, QueryFilter, is_operator_set


def _native_value(value: Any) -> Any:
    """Normalize a condition value into its native form."""
    if isinstance(value, QueryConditionOperators):
        return copy.deepcopy(value.to_native())
    if is_operator_set(value):
        return {
            (key if key.startswith("$") else f"${key}"): copy.deepcopy(operand)
            for key, operand in value.items()
        }
    return copy.deepcopy(value)


def compile_filter(query_filter: Optional[QueryFilter]) -> Dict[str, Any]:
    """Compile a QueryFilter into the native filter mapping.

    Args:
        query_filter: Filter to compile (None matches everything)

    Returns:
        Native filter mapping ({} matches everything)
    """
    query: Dict[str, Any] = {}
    if query_filter is None:
        return query

    for condition in query_filter.conditions:
        field = next(iter(condition))
        query[field] = _native_value(condition[field])

    for sub_filter in query_filter.and_:
        query.update(compile_filter(sub_filter))

    if query_filter.or_:
        query["$or"] = [compile_filter(branch) for branch in query_filter.or_]

    if query_filter.not_ is not None:
        negated = compile_filter(query_filter.not_)
        for field, value in negated.items():
            query[field] = {"$ne": value}

    return query


def get_query_conditions_by_unique_indexes(
    data: Mapping[str, Any],
    unique_indexes: Optional[Sequence[str]],
) -> Result[List[QueryCondition]]:
    """Build one equality condition per unique index field present in data.

    Dotted index names address nested fields, matching how engines index them.

    Args:
        data: Entity document
        unique_indexes: Field names covered by uniqueness constraints

    Returns:
        Result with the conditions, or a failure when no condition applies
    """
    if not unique_indexes:
        return Result.failure("No unique indexes supplied")

    conditions: List[QueryCondition] = []
    for field in unique_indexes:
        value = resolve_path(data, field)
        if value is not MISSING:
            conditions.append({field: copy.deepcopy(value)})
    if not conditions:
        return Result.failure(
            f"Entity has none of the unique index fields: {', '.join(unique_indexes)}"
        )
    return Result.success(conditions)
