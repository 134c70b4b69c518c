"""
Sync driver: pushes an association map to the external system.

Phases run in a fixed order:
  1) delete  observed-only items
  2) create  desired-only items
  3) update  items that differ

A failing item is recorded and skipped; the pass goes on. When anything
failed, SyncError is raised at the end with every failure and the counts of
what succeeded. The association map is updated in place as items succeed.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Generic, List, Optional, Protocol, TypeVar

from qualitysync.core.classifier import to_create, to_delete, to_update
from qualitysync.core.correlator import Association, AssociationMap, StableKey
from qualitysync.core.errors import ItemFailure, PreconditionError, SyncError
from qualitysync.core.kinds import ItemKind

D = TypeVar("D")
O = TypeVar("O")


class MutationPort(Protocol):
    """What the sync driver needs from the external system."""

    def create_item(self, parent_key: str, desired: Any) -> Any:
        """Create the item under `parent_key`; return its observed form (with id)."""
        ...

    def update_item(self, observed_id: str, desired: Any) -> None:
        ...

    def delete_item(self, observed_id: str) -> None:
        ...


def _accumulate(counts: Dict[str, int], status: str) -> None:
    counts[status] = counts.get(status, 0) + 1


class SyncDriver(Generic[D, O]):
    def __init__(self, kind: ItemKind, port: MutationPort, *, logger: Optional[logging.Logger] = None) -> None:
        self.kind = kind
        self.port = port
        self.log = logger or logging.getLogger("qs.sync")

    def sync(self, parent_key: Optional[str], associations: AssociationMap) -> Dict[str, int]:
        """Returns counts keyed DELETED / CREATED / UPDATED."""
        counts: Dict[str, int] = {}
        if not associations:
            return counts
        if not parent_key:
            raise PreconditionError(f"parent key is not set; cannot sync {self.kind.name}s")

        failures: List[ItemFailure] = []
        self._delete_phase(associations, counts, failures)
        self._create_phase(parent_key, associations, counts, failures)
        self._update_phase(associations, counts, failures)

        if failures:
            for f in failures:
                self.log.error("Sync failure: %s", f)
            raise SyncError(failures, counts=counts, context=self.kind.name)

        self.log.info(
            "%s sync on %s done: deleted=%d created=%d updated=%d",
            self.kind.name,
            parent_key,
            counts.get("DELETED", 0),
            counts.get("CREATED", 0),
            counts.get("UPDATED", 0),
        )
        return counts

    # ---------- phases ----------

    def _delete_phase(self, associations: AssociationMap, counts: Dict[str, int], failures: List[ItemFailure]) -> None:
        for assoc in to_delete(associations):
            oid = self.kind.observed_id(assoc.observed)
            label = self.kind.label(observed=assoc.observed)
            try:
                self.port.delete_item(oid)
            except Exception as e:
                failures.append(ItemFailure("delete", str(assoc.key), label, e))
                continue
            del associations[assoc.key]
            _accumulate(counts, "DELETED")
            self.log.info("Deleted %s %s (id=%s)", self.kind.name, label, oid)

    def _create_phase(
        self,
        parent_key: str,
        associations: AssociationMap,
        counts: Dict[str, int],
        failures: List[ItemFailure],
    ) -> None:
        for assoc in to_create(associations):
            label = self.kind.label(desired=assoc.desired)
            try:
                created = self.port.create_item(parent_key, assoc.desired)
                if created is None:
                    raise ValueError("create returned no item")
                new_id = self.kind.observed_id(created)
            except Exception as e:
                failures.append(ItemFailure("create", str(assoc.key), label, e))
                continue
            new_key = StableKey(new_id)
            del associations[assoc.key]
            associations[new_key] = Association(key=new_key, desired=assoc.desired, observed=created, up_to_date=True)
            _accumulate(counts, "CREATED")
            self.log.info("Created %s %s (id=%s)", self.kind.name, label, new_id)

    def _update_phase(self, associations: AssociationMap, counts: Dict[str, int], failures: List[ItemFailure]) -> None:
        for assoc in to_update(associations):
            oid = self.kind.observed_id(assoc.observed)
            label = self.kind.label(desired=assoc.desired)
            try:
                self.port.update_item(oid, assoc.desired)
            except Exception as e:
                failures.append(ItemFailure("update", str(assoc.key), label, e))
                continue
            associations[assoc.key] = Association(
                key=assoc.key, desired=assoc.desired, observed=assoc.observed, up_to_date=True
            )
            _accumulate(counts, "UPDATED")
            self.log.info("Updated %s %s (id=%s)", self.kind.name, label, oid)
