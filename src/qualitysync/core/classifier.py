"""Read-only queries over an association map."""

from __future__ import annotations

from typing import List, NamedTuple

from qualitysync.core.correlator import Association, AssociationMap


class Buckets(NamedTuple):
    to_create: List[Association]
    to_delete: List[Association]
    to_update: List[Association]
    current: List[Association]


def to_create(associations: AssociationMap) -> List[Association]:
    return [a for a in associations.values() if a.desired is not None and a.observed is None]


def to_delete(associations: AssociationMap) -> List[Association]:
    return [a for a in associations.values() if a.observed is not None and a.desired is None]


def to_update(associations: AssociationMap) -> List[Association]:
    return [
        a
        for a in associations.values()
        if a.desired is not None and a.observed is not None and not a.up_to_date
    ]


def current(associations: AssociationMap) -> List[Association]:
    return [
        a
        for a in associations.values()
        if a.desired is not None and a.observed is not None and a.up_to_date
    ]


def all_current(associations: AssociationMap) -> bool:
    """True when every association is up to date (an empty map counts)."""
    return all(a.up_to_date for a in associations.values())


def classify(associations: AssociationMap) -> Buckets:
    return Buckets(
        to_create=to_create(associations),
        to_delete=to_delete(associations),
        to_update=to_update(associations),
        current=current(associations),
    )
