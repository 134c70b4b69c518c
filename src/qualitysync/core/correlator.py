"""
Correlator: pairs desired and observed items into an association map.

Keys are either the external identifier (StableKey) or, for desired items that
have none yet, a synthetic BusinessKey. The two key types never compare equal,
so a real id can't collide with a business key that happens to render the same.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, Sequence, Tuple, TypeVar, Union

from qualitysync.core.errors import DuplicateItemError
from qualitysync.core.kinds import ItemKind

D = TypeVar("D")
O = TypeVar("O")


@dataclass(frozen=True)
class StableKey:
    id: str

    def __str__(self) -> str:
        return self.id


@dataclass(frozen=True)
class BusinessKey:
    fields: Tuple[Any, ...]

    def __str__(self) -> str:
        return "new:" + "/".join("*" if f is None else str(f) for f in self.fields)


CorrelationKey = Union[StableKey, BusinessKey]


@dataclass(frozen=True)
class Association(Generic[D, O]):
    key: CorrelationKey
    desired: Optional[D] = None
    observed: Optional[O] = None
    up_to_date: bool = False


AssociationMap = Dict[CorrelationKey, Association]


def correlate(
    kind: ItemKind,
    desired: Sequence[Any],
    observed: Sequence[Any],
    logger: Optional[logging.Logger] = None,
) -> AssociationMap:
    """
    Build the association map for one parent resource.

    Observed items are seeded first, then desired items attach by identifier or
    get their own entry. A desired id that matches nothing observed keeps its
    (stale) StableKey, so it shows up as something to create.

    Raises DuplicateItemError when two items would share a key.
    """
    log = logger or logging.getLogger("qs.correlator")
    associations: AssociationMap = {}

    for obs in observed:
        key = StableKey(kind.observed_id(obs))
        if key in associations:
            raise DuplicateItemError(f"Observed {kind.name} id '{key}' appears more than once")
        associations[key] = Association(key=key, observed=obs)

    for item in desired:
        sid = kind.stable_id(item)
        if sid is None:
            key = BusinessKey(tuple(kind.business_key(item)))
            if key in associations:
                raise DuplicateItemError(f"Duplicate desired {kind.name}: {kind.label(item)} ({key})")
            associations[key] = Association(key=key, desired=item)
            continue

        key = StableKey(sid)
        current = associations.get(key)
        if current is not None and current.desired is not None:
            raise DuplicateItemError(f"Desired {kind.name} id '{sid}' is used more than once")
        if current is None:
            log.debug("Stale %s id %s (%s) not observed", kind.name, sid, kind.label(item))
            associations[key] = Association(key=key, desired=item)
        else:
            associations[key] = Association(
                key=key,
                desired=item,
                observed=current.observed,
                up_to_date=kind.is_up_to_date(item, current.observed),
            )

    return associations
