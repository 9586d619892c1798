"""
Evaluation of native filters and cursor options against plain documents.

Used by engines that keep documents in process (the in-memory engine) and
for projection by engines that cannot project natively.

Semantics:
    - A literal matches by structural equality; None also matches a missing field
    - $eq $ne $gt $gte $lt $lte $in $nin $regex follow document-store rules:
      $ne / $nin match missing fields, ordering operators never do
    - $or / $and take a list of native filters
    - Dotted field names address nested mappings
    - Sorting puts missing and None values first in ascending order
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ..errors import InvalidFilterError
from .types import FieldsOptions, SortOptions


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()


def resolve_path(document: Mapping[str, Any], dotted_path: str) -> Any:
    """Resolve a dotted path against nested mappings, MISSING when absent."""
    current: Any = document
    for segment in dotted_path.split("."):
        if not isinstance(current, Mapping) or segment not in current:
            return MISSING
        current = current[segment]
    return current


def values_equal(left: Any, right: Any) -> bool:
    """Structural equality that keeps booleans distinct from numbers."""
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        return left.keys() == right.keys() and all(values_equal(left[k], right[k]) for k in left)
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(values_equal(a, b) for a, b in zip(left, right))
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    return left == right


def _literal_matches(value: Any, expected: Any) -> bool:
    if expected is None:
        return value is MISSING or value is None
    if value is MISSING:
        return False
    return values_equal(value, expected)


def _compare(value: Any, operand: Any, op: str) -> bool:
    if value is MISSING or value is None or operand is None:
        return False
    try:
        if op == "$gt":
            return value > operand
        if op == "$gte":
            return value >= operand
        if op == "$lt":
            return value < operand
        return value <= operand
    except TypeError:
        return False


def _regex_matches(value: Any, pattern: Any) -> bool:
    if not isinstance(value, str):
        return False
    if isinstance(pattern, re.Pattern):
        return pattern.search(value) is not None
    if not isinstance(pattern, str):
        raise InvalidFilterError(f"$regex expects a string or compiled pattern, got {type(pattern).__name__}")
    return re.search(pattern, value) is not None


def _operand_list(op: str, operand: Any) -> Sequence[Any]:
    if not isinstance(operand, (list, tuple)):
        raise InvalidFilterError(f"{op} expects a list, got {type(operand).__name__}")
    return operand


def _operators_match(value: Any, operators: Mapping[str, Any]) -> bool:
    for op, operand in operators.items():
        if op == "$eq":
            ok = _literal_matches(value, operand)
        elif op == "$ne":
            ok = not _literal_matches(value, operand)
        elif op in ("$gt", "$gte", "$lt", "$lte"):
            ok = _compare(value, operand, op)
        elif op == "$in":
            ok = any(_literal_matches(value, item) for item in _operand_list(op, operand))
        elif op == "$nin":
            ok = not any(_literal_matches(value, item) for item in _operand_list(op, operand))
        elif op == "$regex":
            ok = _regex_matches(value, operand)
        else:
            raise InvalidFilterError(f"Unknown query operator '{op}'")
        if not ok:
            return False
    return True


def _is_native_operator_set(value: Any) -> bool:
    return (
        isinstance(value, Mapping)
        and bool(value)
        and all(isinstance(key, str) and key.startswith("$") for key in value)
    )


def matches(document: Mapping[str, Any], native_filter: Optional[Mapping[str, Any]]) -> bool:
    """Whether a document satisfies a compiled native filter.

    Raises:
        InvalidFilterError: If the filter uses an unknown operator or a
            logical operator without a list of filters
    """
    if not native_filter:
        return True

    for key, expected in native_filter.items():
        if key in ("$or", "$and"):
            branches = _operand_list(key, expected)
            results = (matches(document, branch) for branch in branches)
            ok = any(results) if key == "$or" else all(results)
        elif key.startswith("$"):
            raise InvalidFilterError(f"Unknown top-level operator '{key}'")
        else:
            value = resolve_path(document, key)
            if _is_native_operator_set(expected):
                ok = _operators_match(value, expected)
            else:
                ok = _literal_matches(value, expected)
        if not ok:
            return False
    return True


# Type ordering used when sorting mixed values: None < numbers < strings
# < mappings < lists < booleans.
def _sort_key(value: Any) -> tuple:
    if value is MISSING or value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (5, value)
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    if isinstance(value, Mapping):
        return (3, json.dumps(value, sort_keys=True, default=str))
    if isinstance(value, (list, tuple)):
        return (4, json.dumps(value, sort_keys=True, default=str))
    return (6, str(value))


def apply_sort(
    documents: Iterable[Dict[str, Any]],
    sort: Optional[Sequence[SortOptions]],
) -> List[Dict[str, Any]]:
    """Stable multi-key sort; earlier sort entries take priority."""
    ordered = list(documents)
    if not sort:
        return ordered
    for option in reversed(sort):
        ordered.sort(
            key=lambda doc: _sort_key(resolve_path(doc, option.field)),
            reverse=option.order == "desc",
        )
    return ordered


def apply_pagination(
    documents: Sequence[Dict[str, Any]],
    page: Optional[int],
    limit: Optional[int],
) -> List[Dict[str, Any]]:
    """Slice out one page. Applies only when both page and limit are set."""
    if not page or not limit:
        return list(documents)
    skip = (page - 1) * limit
    return list(documents[skip:skip + limit])


def _set_path(target: Dict[str, Any], dotted_path: str, value: Any) -> None:
    *parents, leaf = dotted_path.split(".")
    for segment in parents:
        child = target.get(segment)
        if child is None:
            child = target[segment] = {}
        elif not isinstance(child, dict):
            # An enclosing field is already included whole
            return
        target = child
    target[leaf] = value


def _drop_path(document: Mapping[str, Any], dotted_path: str) -> Dict[str, Any]:
    head, _, rest = dotted_path.partition(".")
    if head not in document:
        return dict(document)
    if not rest:
        return {name: value for name, value in document.items() if name != head}
    child = document[head]
    if not isinstance(child, Mapping):
        return dict(document)
    return {**document, head: _drop_path(child, rest)}


def apply_projection(
    document: Dict[str, Any],
    fields: Optional[FieldsOptions],
) -> Dict[str, Any]:
    """Keep included fields (if any), then drop excluded ones.

    Dotted names address nested fields; included nested values keep their
    enclosing structure. The input document is never modified.
    """
    if fields is None:
        return document
    projected = document
    if fields.include:
        projected = {}
        for name in fields.include:
            value = resolve_path(document, name)
            if value is not MISSING:
                _set_path(projected, name, value)
    if fields.exclude:
        for name in fields.exclude:
            projected = _drop_path(projected, name)
    return projected
