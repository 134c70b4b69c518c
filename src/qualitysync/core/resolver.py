"""
Identity resolver (late initialization).

Runs before correlation. Desired items whose identifier is missing or stale get
the identifier of the first matching observed item, and unset optional
attributes are filled from it. Rules:

- an item whose id resolves to an observed item is never touched
- an observed id is handed out at most once per call
- with no match, a stale id is kept as-is (it will be recreated, not lost)
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence, Set

from qualitysync.core.kinds import ItemKind


def _find_match(kind: ItemKind, item: Any, observed: Sequence[Any], claimed: Set[str]) -> Optional[Any]:
    for obs in observed:
        if kind.observed_id(obs) in claimed:
            continue
        if kind.matches(item, obs):
            return obs
    return None


def resolve(
    kind: ItemKind,
    desired: Sequence[Any],
    observed: Sequence[Any],
    logger: Optional[logging.Logger] = None,
) -> bool:
    """Mutates `desired` in place. Returns True when any item changed."""
    log = logger or logging.getLogger("qs.resolver")
    observed_ids = {kind.observed_id(o) for o in observed}

    claimed: Set[str] = set()
    pending = []
    for item in desired:
        sid = kind.stable_id(item)
        if sid is not None and sid in observed_ids:
            claimed.add(sid)
        else:
            pending.append(item)

    changed = False
    for item in pending:
        sid = kind.stable_id(item)
        match = _find_match(kind, item, observed, claimed)
        if match is None:
            if sid is not None:
                log.debug("No observed %s matches %s; id %s left as declared", kind.name, kind.label(item), sid)
            continue

        oid = kind.observed_id(match)
        claimed.add(oid)
        if sid != oid:
            kind.assign_id(item, match)
            changed = True
            log.info("Resolved %s %s -> id=%s (was %s)", kind.name, kind.label(item), oid, sid or "unset")
        if kind.late_initialize(item, match):
            changed = True

    return changed
