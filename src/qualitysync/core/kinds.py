"""
Item kinds: the capability set the reconciliation engine needs from one kind
of child item, plus the kinds QualitySync manages (gate conditions, profile
rules, settings).

An ItemKind answers:
  - stable_id / observed_id : identifiers on each side (desired may have none)
  - business_key            : correlation key for desired items without an id
  - is_up_to_date           : nil-tolerant comparison (the Comparator)
  - matches / assign_id / late_initialize : identity resolution hooks
  - label                   : short human-readable description for logs
"""

from __future__ import annotations

from typing import Any, Dict, Generic, Optional, Tuple, TypeVar

from qualitysync.core.compare import assign_if_unset, optional_collection_equal, optional_equal
from qualitysync.core.models import (
    ConditionObservation,
    ConditionSpec,
    RuleObservation,
    RuleSpec,
    SettingObservation,
    SettingSpec,
)

D = TypeVar("D")
O = TypeVar("O")


class ItemKind(Generic[D, O]):
    """Base class; subclasses implement every hook except late_initialize."""

    name: str = "item"

    def stable_id(self, desired: D) -> Optional[str]:
        raise NotImplementedError

    def observed_id(self, observed: O) -> str:
        raise NotImplementedError

    def business_key(self, desired: D) -> Tuple[Any, ...]:
        raise NotImplementedError

    def is_up_to_date(self, desired: Optional[D], observed: Optional[O]) -> bool:
        """
        Must be total: an unset desired item is trivially satisfied, a missing
        observed item never is.
        """
        raise NotImplementedError

    def matches(self, desired: D, observed: O) -> bool:
        """Semantic equivalence used when the desired identifier is absent or stale."""
        raise NotImplementedError

    def assign_id(self, desired: D, observed: O) -> None:
        raise NotImplementedError

    def late_initialize(self, desired: D, observed: O) -> bool:
        """Back-fill unset optional attributes from `observed`. Returns True if anything changed."""
        return False

    def label(self, desired: Optional[D] = None, observed: Optional[O] = None) -> str:
        return self.name


class GateConditionKind(ItemKind[ConditionSpec, ConditionObservation]):
    name = "quality gate condition"

    def stable_id(self, desired: ConditionSpec) -> Optional[str]:
        return desired.id or None

    def observed_id(self, observed: ConditionObservation) -> str:
        return observed.id

    def business_key(self, desired: ConditionSpec) -> Tuple[Any, ...]:
        return (desired.metric, desired.op)

    def is_up_to_date(self, desired: Optional[ConditionSpec], observed: Optional[ConditionObservation]) -> bool:
        if desired is None:
            return True
        if observed is None:
            return False
        return (
            desired.metric == observed.metric
            and desired.error == observed.error
            and optional_equal(desired.op, observed.op)
        )

    def matches(self, desired: ConditionSpec, observed: ConditionObservation) -> bool:
        # the threshold is not part of identity; a changed error is an update
        return desired.metric == observed.metric and optional_equal(desired.op, observed.op)

    def assign_id(self, desired: ConditionSpec, observed: ConditionObservation) -> None:
        desired.id = observed.id

    def late_initialize(self, desired: ConditionSpec, observed: ConditionObservation) -> bool:
        return assign_if_unset(desired, "op", observed.op)

    def label(self, desired: Optional[ConditionSpec] = None, observed: Optional[ConditionObservation] = None) -> str:
        src = desired if desired is not None else observed
        if src is None:
            return self.name
        return f"{src.metric} {src.op or '*'} {src.error}"


class ProfileRuleKind(ItemKind[RuleSpec, RuleObservation]):
    """
    Rule activations are keyed by rule key on both sides. Only the key is
    compared: activated severity/params cannot be read back from the rules API.
    """

    name = "quality profile rule"

    def stable_id(self, desired: RuleSpec) -> Optional[str]:
        return desired.rule or None

    def observed_id(self, observed: RuleObservation) -> str:
        return observed.key

    def business_key(self, desired: RuleSpec) -> Tuple[Any, ...]:
        return (desired.rule,)

    def is_up_to_date(self, desired: Optional[RuleSpec], observed: Optional[RuleObservation]) -> bool:
        if desired is None:
            return True
        if observed is None:
            return False
        return desired.rule == observed.key

    def matches(self, desired: RuleSpec, observed: RuleObservation) -> bool:
        return desired.rule == observed.key

    def assign_id(self, desired: RuleSpec, observed: RuleObservation) -> None:
        desired.rule = observed.key

    def label(self, desired: Optional[RuleSpec] = None, observed: Optional[RuleObservation] = None) -> str:
        if desired is not None:
            return desired.rule
        if observed is not None:
            return observed.key
        return self.name


class SettingKind(ItemKind[SettingSpec, SettingObservation]):
    """Settings are keyed by setting key. Multi values compare ignoring order."""

    name = "setting"

    def stable_id(self, desired: SettingSpec) -> Optional[str]:
        return desired.key or None

    def observed_id(self, observed: SettingObservation) -> str:
        return observed.key

    def business_key(self, desired: SettingSpec) -> Tuple[Any, ...]:
        return (desired.key,)

    def is_up_to_date(self, desired: Optional[SettingSpec], observed: Optional[SettingObservation]) -> bool:
        if desired is None:
            return True
        if observed is None:
            return False
        return (
            optional_equal(desired.value, observed.value)
            and optional_collection_equal(desired.values, observed.values)
            and optional_collection_equal(desired.field_values, observed.field_values)
        )

    def matches(self, desired: SettingSpec, observed: SettingObservation) -> bool:
        return desired.key == observed.key

    def assign_id(self, desired: SettingSpec, observed: SettingObservation) -> None:
        desired.key = observed.key

    def label(self, desired: Optional[SettingSpec] = None, observed: Optional[SettingObservation] = None) -> str:
        src = desired if desired is not None else observed
        if src is None:
            return self.name
        if src.value:
            return f"{src.key}={src.value}"
        if src.values:
            return f"{src.key}=[{', '.join(src.values)}]"
        if src.field_values:
            return f"{src.key}={{{_pairs_label(src.field_values)}}}"
        return src.key


def _pairs_label(values: Dict[str, str]) -> str:
    return ", ".join(f"{k}={values[k]}" for k in sorted(values))


GATE_CONDITIONS = GateConditionKind()
PROFILE_RULES = ProfileRuleKind()
SETTINGS = SettingKind()
