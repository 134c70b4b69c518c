"""
Reporting helpers (table or JSON) for plan and apply results.

`build_rows` turns a reconciliation report into one row per item;
`print_rows` keeps only the columns that carry something and prints a
compact table, or JSON for machine consumption.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from qualitysync.core.correlator import Association
from qualitysync.core.kinds import ItemKind
from qualitysync.core.reconciler import ReconciliationReport

COLUMNS = [
    "resource",
    "kind",
    "key",
    "item",
    "action",
    "deleted",
    "created",
    "updated",
    "status",
    "error",
]
MANDATORY = {"resource", "kind", "status"}


def _action(assoc: Association) -> str:
    if assoc.observed is None:
        return "create"
    if assoc.desired is None:
        return "delete"
    return "none" if assoc.up_to_date else "update"


def build_rows(
    resource_kind: str,
    resource: str,
    report: Optional[ReconciliationReport],
    item_kind: ItemKind,
) -> List[Dict[str, Any]]:
    """Plan rows for one parent. `report=None` means the parent does not exist yet."""
    if report is None:
        return [{"resource": resource, "kind": resource_kind, "item": "(missing)", "action": "create", "status": "drift"}]

    rows: List[Dict[str, Any]] = []
    if not report.parent_up_to_date:
        rows.append({"resource": resource, "kind": resource_kind, "item": "(settings)", "action": "update", "status": "drift"})
    for assoc in report.associations.values():
        action = _action(assoc)
        rows.append(
            {
                "resource": resource,
                "kind": item_kind.name,
                "key": str(assoc.key),
                "item": item_kind.label(assoc.desired, assoc.observed),
                "action": action,
                "status": "current" if action == "none" else "drift",
            }
        )
    if not rows:
        rows.append({"resource": resource, "kind": resource_kind, "action": "none", "status": "current"})
    return rows


def summarize_counts(counts: Dict[str, int]) -> str:
    keys = ["DELETED", "CREATED", "UPDATED", "ERROR"]
    return " | ".join(f"{k}={counts.get(k, 0)}" for k in keys)


def _normalize_row(row: Dict[str, Any]) -> Dict[str, Any]:
    r = dict(row)
    err = r.get("error")
    r["error"] = str(err).strip()[:160] if err is not None and str(err).strip() else ""
    return r


def print_rows(rows: List[Dict[str, Any]], fmt: str = "table") -> None:
    """Render rows as a table (default) or as JSON."""
    norm_rows = [_normalize_row(r) for r in rows]

    if fmt == "json":
        print(json.dumps(norm_rows, indent=2))
        return

    def _present(v: Any) -> bool:
        return not (v is None or v == "")

    cols = [c for c in COLUMNS if c in MANDATORY or any(_present(r.get(c)) for r in norm_rows)]

    def _fmt(v: Any) -> str:
        if v is None or v == "":
            return "—"
        return str(v)

    widths = {c: len(c) for c in cols}
    for r in norm_rows:
        for c in cols:
            widths[c] = max(widths[c], len(_fmt(r.get(c))))

    print("| " + " | ".join(c.ljust(widths[c]) for c in cols) + " |")
    print("| " + " | ".join("-" * widths[c] for c in cols) + " |")
    for r in norm_rows:
        print("| " + " | ".join(_fmt(r.get(c)).ljust(widths[c]) for c in cols) + " |")
