"""
Nil-tolerant comparison helpers.

Convention: on the desired side `None` means "not specified", and an
unspecified attribute never constrains the observed value.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping
from typing import Any, Iterable, Optional


def optional_equal(desired: Optional[Any], observed: Any) -> bool:
    """True when `desired` is unset, else plain equality."""
    if desired is None:
        return True
    return desired == observed


def optional_equal_optional(left: Optional[Any], right: Optional[Any]) -> bool:
    """Both unset -> equal; exactly one unset -> different; else plain equality."""
    if left is None and right is None:
        return True
    if left is None or right is None:
        return False
    return left == right


def collections_equal(left: Optional[Iterable[Any]], right: Optional[Iterable[Any]]) -> bool:
    """
    Order-insensitive equality where None and an empty collection are equivalent.
    Mappings compare as mappings, other iterables as multisets.
    """
    if isinstance(left, Mapping) or isinstance(right, Mapping):
        return dict(left or {}) == dict(right or {})

    lhs = list(left or [])
    rhs = list(right or [])
    if len(lhs) != len(rhs):
        return False
    try:
        return Counter(lhs) == Counter(rhs)
    except TypeError:
        # unhashable elements
        remaining = list(rhs)
        for item in lhs:
            if item not in remaining:
                return False
            remaining.remove(item)
        return True


def optional_collection_equal(desired: Optional[Iterable[Any]], observed: Optional[Iterable[Any]]) -> bool:
    if desired is None:
        return True
    return collections_equal(desired, observed)


def assign_if_unset(obj: Any, attr: str, value: Any) -> bool:
    """
    Set `obj.attr = value` when the attribute is currently None.
    Empty observed values ("" / None) are not copied. Returns True if assigned.
    """
    if getattr(obj, attr) is not None:
        return False
    if value is None or value == "":
        return False
    setattr(obj, attr, value)
    return True
