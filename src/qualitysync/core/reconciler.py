"""
Child reconciler: the engine wired together for one item kind.

  observe(desired, observed)          resolve ids, correlate, classify (read-only
                                      towards the external system)
  apply(parent_key, associations, port)  run the sync driver on a map produced
                                      by observe()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from qualitysync.core.classifier import Buckets, all_current, classify
from qualitysync.core.correlator import AssociationMap, correlate
from qualitysync.core.kinds import ItemKind
from qualitysync.core.resolver import resolve
from qualitysync.core.sync import MutationPort, SyncDriver


@dataclass
class ReconciliationReport:
    resource_up_to_date: bool
    resource_late_initialized: bool
    associations: AssociationMap
    parent_up_to_date: bool = True  # parent fields only (name, default, ...)

    @property
    def buckets(self) -> Buckets:
        return classify(self.associations)


class ChildReconciler:
    def __init__(self, kind: ItemKind, *, logger: Optional[logging.Logger] = None) -> None:
        self.kind = kind
        self.log = logger

    def observe(self, desired: List[Any], observed: Sequence[Any]) -> ReconciliationReport:
        changed = resolve(self.kind, desired, observed, logger=self.log)
        associations = correlate(self.kind, desired, observed, logger=self.log)
        return ReconciliationReport(
            resource_up_to_date=all_current(associations),
            resource_late_initialized=changed,
            associations=associations,
        )

    def apply(self, parent_key: Optional[str], associations: AssociationMap, port: MutationPort) -> Dict[str, int]:
        return SyncDriver(self.kind, port, logger=self.log).sync(parent_key, associations)
