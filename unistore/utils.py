"""Entity comparison helpers."""

from __future__ import annotations

import dataclasses
from typing import Any, Dict, Mapping, Optional, Sequence

from pydantic import BaseModel

from .query import MISSING, resolve_path, values_equal


def to_document(entity: Any) -> Dict[str, Any]:
    """Normalize an entity (pydantic model, dataclass or mapping) to a dict."""
    if isinstance(entity, BaseModel):
        return entity.model_dump(mode="json")
    if dataclasses.is_dataclass(entity) and not isinstance(entity, type):
        return dataclasses.asdict(entity)
    if isinstance(entity, Mapping):
        return dict(entity)
    raise TypeError(f"Cannot convert {type(entity).__name__} to a document")


def deep_equal(left: Any, right: Any, fields: Optional[Sequence[str]] = None) -> bool:
    """Structural equality of two entities, insensitive to key order.

    Args:
        left: First entity
        right: Second entity
        fields: Compare only these (dotted) fields; None compares everything

    Booleans never equal numbers. A field missing on both sides is equal.
    """
    left_doc = to_document(left)
    right_doc = to_document(right)

    if fields is None:
        return values_equal(left_doc, right_doc)

    for field in fields:
        left_value = resolve_path(left_doc, field)
        right_value = resolve_path(right_doc, field)
        if left_value is MISSING or right_value is MISSING:
            if left_value is not right_value:
                return False
            continue
        if not values_equal(left_value, right_value):
            return False
    return True
