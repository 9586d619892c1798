"""
Query filter model.

A QueryFilter is a recursive, store-independent description of a query:
- conditions: per-field literals or operator sets, implicitly ANDed
- and / or: nested filters compiled recursively
- not: nested filter negated field by field
- page / limit / sort / fields: cursor options applied by the engine

Filters can be built directly or parsed from plain dictionaries:

    >>> QueryFilter(conditions=[{"age": {"gte": 18}}], sort=[SortOptions(field="age")])
    >>> QueryFilter.model_validate({"or": [{"conditions": [{"tier": "gold"}]}]})

Invariants:
    - page and limit are 1-based and positive
    - sort entries keep their list order (earlier = higher priority)
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

OPERATORS = ("eq", "ne", "gt", "gte", "lt", "lte", "in", "nin", "regex")

# A condition maps one field name to a literal or an operator set.
QueryCondition = Dict[str, Any]


class QueryConditionOperators(BaseModel):
    """Operator set for a single field.

    The membership operators are exposed as ``in_`` / ``nin`` because ``in``
    is a keyword; ``in`` is accepted as an alias when parsing.
    """

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    eq: Any = None
    ne: Any = None
    gt: Any = None
    gte: Any = None
    lt: Any = None
    lte: Any = None
    in_: Optional[List[Any]] = Field(default=None, alias="in")
    nin: Optional[List[Any]] = None
    regex: Optional[Union[str, re.Pattern]] = None

    def to_native(self) -> Dict[str, Any]:
        """Return the ``$``-prefixed operator mapping for the set fields."""
        values = self.model_dump(by_alias=True, exclude_unset=True)
        return {f"${op}": value for op, value in values.items()}


class SortOptions(BaseModel):
    """One sort key."""

    field: str
    order: Literal["asc", "desc"] = "asc"


class FieldsOptions(BaseModel):
    """Projection: fields to include and/or exclude."""

    include: Optional[List[str]] = None
    exclude: Optional[List[str]] = None


class QueryFilter(BaseModel):
    """Recursive query filter.

    Attributes:
        conditions: Field conditions, implicitly ANDed (last write wins per field)
        and_: Sub-filters merged into this one (alias ``and``)
        or_: Alternative sub-filters (alias ``or``)
        not_: Sub-filter negated per field (alias ``not``)
        page: 1-based page number (needs limit)
        limit: Page size
        sort: Sort keys in priority order
        fields: Projection options
    """

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    conditions: List[QueryCondition] = Field(default_factory=list)
    and_: List[QueryFilter] = Field(default_factory=list, alias="and")
    or_: List[QueryFilter] = Field(default_factory=list, alias="or")
    not_: Optional[QueryFilter] = Field(default=None, alias="not")
    page: Optional[int] = Field(default=None, ge=1)
    limit: Optional[int] = Field(default=None, ge=1)
    sort: List[SortOptions] = Field(default_factory=list)
    fields: Optional[FieldsOptions] = None

    @model_validator(mode="after")
    def _check_conditions(self) -> QueryFilter:
        for condition in self.conditions:
            if not isinstance(condition, dict) or not condition:
                raise ValueError("each condition must be a non-empty mapping of field to value")
        return self


QueryFilter.model_rebuild()


def is_operator_set(value: Any) -> bool:
    """Whether a condition value is an operator set rather than a literal.

    A mapping qualifies when it is non-empty and every key is an operator
    name, bare (``gt``) or ``$``-prefixed (``$gt``).
    """
    if isinstance(value, QueryConditionOperators):
        return True
    if not isinstance(value, dict) or not value:
        return False
    return all(isinstance(key, str) and key.lstrip("$") in OPERATORS for key in value)
