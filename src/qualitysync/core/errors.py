"""
Reconciliation errors.

ReconcileError
  ├── PreconditionError     pass cannot start (nothing mutated)
  │     └── DuplicateItemError
  └── SyncError             some items failed, others went through
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional


class ReconcileError(Exception):
    pass


class PreconditionError(ReconcileError):
    pass


class DuplicateItemError(PreconditionError):
    pass


@dataclass(frozen=True)
class ItemFailure:
    phase: str  # delete | create | update
    key: str
    label: str
    error: Exception

    def __str__(self) -> str:
        return f"{self.phase} {self.label} [{self.key}]: {self.error}"


class SyncError(ReconcileError):
    """Aggregate of every per-item failure of one sync pass."""

    def __init__(self, failures: Iterable[ItemFailure], counts: Optional[Dict[str, int]] = None, context: str = "") -> None:
        self.failures: List[ItemFailure] = list(failures)
        self.counts: Dict[str, int] = dict(counts or {})
        self.context = context
        where = f" during {context} sync" if context else ""
        details = "; ".join(str(f) for f in self.failures)
        super().__init__(f"encountered {len(self.failures)} error(s){where}: {details}")
