"""
Item and resource models for QualitySync.

Desired side (declared by the user, mutable so late initialization can fill it):
  - ConditionSpec      one quality-gate condition
  - RuleSpec           one quality-profile rule activation
  - SettingSpec        one setting value (single, multi or field values)
  - QualityGateSpec    a gate and its conditions
  - QualityProfileSpec a profile and its rule activations
  - SettingsSpec       the settings declared for one scope (global or a component)

Observed side (rebuilt from the SonarQube API every pass, never mutated):
  - ConditionObservation, RuleObservation, SettingObservation
  - QualityGateObservation, QualityProfileObservation, SettingsObservation

`from_dict`/`to_dict` map the manifest shape, `from_api` maps SonarQube JSON.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _opt_bool(value: Any) -> Optional[bool]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _opt_str_map(value: Any) -> Optional[Dict[str, str]]:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError(f"Expected a mapping, got {type(value).__name__}")
    return {str(k): str(v) for k, v in value.items()}


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


# ---------- Gate conditions ----------

@dataclass
class ConditionSpec:
    """Desired quality-gate condition. `id` is assigned by SonarQube."""
    metric: str
    error: str
    op: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConditionSpec":
        return cls(
            metric=str(data.get("metric") or "").strip(),
            error=str(data.get("error") if data.get("error") is not None else "").strip(),
            op=_opt_str(data.get("op")),
            id=_opt_str(data.get("id")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({"id": self.id, "metric": self.metric, "op": self.op, "error": self.error})


@dataclass(frozen=True)
class ConditionObservation:
    id: str
    metric: str = ""
    error: str = ""
    op: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ConditionObservation":
        # older SonarQube versions return numeric ids
        return cls(
            id=str(data.get("id", "")),
            metric=str(data.get("metric") or ""),
            error=str(data.get("error") if data.get("error") is not None else ""),
            op=str(data.get("op") or ""),
        )


# ---------- Profile rules ----------

@dataclass
class RuleSpec:
    """
    Desired rule activation. The rule key doubles as its identifier.

    Severity, impacts, params and prioritized are sent on activation but are not
    compared afterwards: the rules API reports rule defaults, not activated values.
    """
    rule: str
    severity: Optional[str] = None
    prioritized: Optional[bool] = None
    impacts: Optional[Dict[str, str]] = None
    params: Optional[Dict[str, str]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleSpec":
        return cls(
            rule=str(data.get("rule") or "").strip(),
            severity=_opt_str(data.get("severity")),
            prioritized=_opt_bool(data.get("prioritized")),
            impacts=_opt_str_map(data.get("impacts")),
            params=_opt_str_map(data.get("params")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "rule": self.rule,
                "severity": self.severity,
                "prioritized": self.prioritized,
                "impacts": dict(self.impacts) if self.impacts is not None else None,
                "params": dict(self.params) if self.params is not None else None,
            }
        )


@dataclass(frozen=True)
class RuleObservation:
    key: str
    name: str = ""
    repo: str = ""
    language: str = ""
    severity: str = ""
    status: str = ""
    type: str = ""
    impacts: Dict[str, str] = field(default_factory=dict)
    parameters: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RuleObservation":
        impacts = {
            str(i.get("softwareQuality", "")): str(i.get("severity", ""))
            for i in (data.get("impacts") or [])
            if isinstance(i, dict)
        }
        params = {
            str(p.get("key", "")): str(p.get("defaultValue", ""))
            for p in (data.get("params") or [])
            if isinstance(p, dict)
        }
        return cls(
            key=str(data.get("key") or ""),
            name=str(data.get("name") or ""),
            repo=str(data.get("repo") or ""),
            language=str(data.get("lang") or ""),
            severity=str(data.get("severity") or ""),
            status=str(data.get("status") or ""),
            type=str(data.get("type") or ""),
            impacts=impacts,
            parameters=params,
        )


# ---------- Settings ----------

def _setting_str(value: Any) -> Optional[str]:
    # YAML booleans must reach SonarQube as "true"/"false"
    if isinstance(value, bool):
        return "true" if value else "false"
    return _opt_str(value)


@dataclass
class SettingSpec:
    """
    Desired value of one setting. Exactly one of `value`, `values` (multi-value
    settings) or `field_values` (property sets) is expected.
    """
    key: str
    value: Optional[str] = None
    values: Optional[List[str]] = None
    field_values: Optional[Dict[str, str]] = None

    @classmethod
    def from_dict(cls, key: str, data: Any) -> "SettingSpec":
        """Accepts `"v"`, `["a", "b"]` or `{value|values|fieldValues: ...}`."""
        key = str(key).strip()
        if isinstance(data, dict):
            values = data.get("values")
            if values is not None and not isinstance(values, list):
                raise ValueError(f"setting {key}: 'values' must be a list")
            return cls(
                key=key,
                value=_setting_str(data.get("value")),
                values=[_setting_str(v) or "" for v in values] if values is not None else None,
                field_values=_opt_str_map(data.get("fieldValues")),
            )
        if isinstance(data, list):
            return cls(key=key, values=[_setting_str(v) or "" for v in data])
        return cls(key=key, value=_setting_str(data))

    def to_dict(self) -> Any:
        if self.values is None and self.field_values is None and self.value is not None:
            return self.value
        if self.value is None and self.field_values is None and self.values is not None:
            return list(self.values)
        return _drop_none(
            {
                "value": self.value,
                "values": list(self.values) if self.values is not None else None,
                "fieldValues": dict(self.field_values) if self.field_values is not None else None,
            }
        )


@dataclass(frozen=True)
class SettingObservation:
    """`inherited` is true when the value comes from a parent scope or the default."""
    key: str
    value: str = ""
    values: List[str] = field(default_factory=list)
    field_values: Dict[str, str] = field(default_factory=dict)
    inherited: bool = False

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "SettingObservation":
        # property sets come back as a list of maps; they are flattened into one
        field_values: Dict[str, str] = {}
        for entry in data.get("fieldValues") or []:
            if isinstance(entry, dict):
                field_values.update({str(k): str(v) for k, v in entry.items()})
        return cls(
            key=str(data.get("key") or ""),
            value=str(data.get("value") if data.get("value") is not None else ""),
            values=[str(v) for v in (data.get("values") or [])],
            field_values=field_values,
            inherited=bool(data.get("inherited", False)),
        )


# ---------- Parents ----------

@dataclass
class QualityGateSpec:
    name: str
    default: Optional[bool] = None
    conditions: List[ConditionSpec] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QualityGateSpec":
        return cls(
            name=str(data.get("name") or "").strip(),
            default=_opt_bool(data.get("default")),
            conditions=[ConditionSpec.from_dict(c) for c in (data.get("conditions") or [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "name": self.name,
                "default": self.default,
                "conditions": [c.to_dict() for c in self.conditions],
            }
        )


@dataclass(frozen=True)
class QualityGateObservation:
    name: str
    is_default: bool = False
    is_built_in: bool = False
    cayc_status: str = ""
    conditions: List[ConditionObservation] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "QualityGateObservation":
        return cls(
            name=str(data.get("name") or ""),
            is_default=bool(data.get("isDefault", False)),
            is_built_in=bool(data.get("isBuiltIn", False)),
            cayc_status=str(data.get("caycStatus") or ""),
            conditions=[
                ConditionObservation.from_api(c)
                for c in (data.get("conditions") or [])
                if isinstance(c, dict)
            ],
        )


@dataclass
class QualityProfileSpec:
    """`key` is the SonarQube profile key, unknown until the profile exists."""
    name: str
    language: str
    default: Optional[bool] = None
    key: Optional[str] = None
    rules: List[RuleSpec] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QualityProfileSpec":
        return cls(
            name=str(data.get("name") or "").strip(),
            language=str(data.get("language") or "").strip(),
            default=_opt_bool(data.get("default")),
            key=_opt_str(data.get("key")),
            rules=[RuleSpec.from_dict(r) for r in (data.get("rules") or [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "name": self.name,
                "language": self.language,
                "key": self.key,
                "default": self.default,
                "rules": [r.to_dict() for r in self.rules],
            }
        )


@dataclass(frozen=True)
class QualityProfileObservation:
    key: str
    name: str = ""
    language: str = ""
    is_default: bool = False
    is_built_in: bool = False
    active_rule_count: int = 0
    rules: List[RuleObservation] = field(default_factory=list)

    @classmethod
    def from_api(cls, profile: Dict[str, Any], rules: Optional[List[RuleObservation]] = None) -> "QualityProfileObservation":
        return cls(
            key=str(profile.get("key") or ""),
            name=str(profile.get("name") or ""),
            language=str(profile.get("language") or ""),
            is_default=bool(profile.get("isDefault", False)),
            is_built_in=bool(profile.get("isBuiltIn", False)),
            active_rule_count=int(profile.get("activeRuleCount") or 0),
            rules=list(rules or []),
        )


@dataclass
class SettingsSpec:
    """
    Settings of one scope: global when `component` is unset, else a project
    key. With `prune`, values set at this scope but not declared are reset.
    """
    component: Optional[str] = None
    prune: bool = False
    settings: List[SettingSpec] = field(default_factory=list)

    @property
    def scope(self) -> str:
        return self.component or "(global)"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SettingsSpec":
        declared = data.get("settings") or {}
        if not isinstance(declared, dict):
            raise ValueError("'settings' must be a mapping of setting key to value")
        return cls(
            component=_opt_str(data.get("component")),
            prune=bool(_opt_bool(data.get("prune"))),
            settings=[SettingSpec.from_dict(k, v) for k, v in declared.items()],
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.component:
            out["component"] = self.component
        if self.prune:
            out["prune"] = True
        out["settings"] = {s.key: s.to_dict() for s in self.settings}
        return out


@dataclass(frozen=True)
class SettingsObservation:
    component: Optional[str] = None
    settings: List[SettingObservation] = field(default_factory=list)
