"""
Manifest: the desired state, read from YAML or from an Excel workbook.

YAML layout:
    qualityGates:
      - name: Corporate
        default: true
        conditions:
          - {metric: new_coverage, op: LT, error: "80"}
    qualityProfiles:
      - name: Corporate Java
        language: java
        rules:
          - {rule: java:S1144, severity: MAJOR, params: {max: "10"}}
    settings:
      - component: my-project        # omit for global settings
        prune: true                  # reset values set here but not declared
        settings:
          sonar.exclusions: ["**/generated/**"]
          sonar.scm.disabled: true

XLSX layout (one row per item, parents referenced by name):
    QualityGates     Name, Default
    Conditions       Gate, Metric, Op, Error, Id
    QualityProfiles  Name, Language, Key, Default
    Rules            Profile, Rule, Severity, Prioritized, Impacts, Params
    Settings         Component, Key, Value, Values, FieldValues, Prune

Impacts, Params and FieldValues cells use `k=v;k=v`; Values cells use `a;b`.
A blank Component means global settings; Prune on any row applies to its scope.

`save_manifest` always writes YAML, so identifiers filled in by late
initialization survive to the next run.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
import yaml

from qualitysync.core.models import (
    ConditionSpec,
    QualityGateSpec,
    QualityProfileSpec,
    RuleSpec,
    SettingSpec,
    SettingsSpec,
)


class ManifestError(Exception):
    """Raised when a manifest is unreadable or inconsistent."""


SHEET_GATES = "QualityGates"
SHEET_CONDITIONS = "Conditions"
SHEET_PROFILES = "QualityProfiles"
SHEET_RULES = "Rules"
SHEET_SETTINGS = "Settings"

REQUIRED_COLUMNS = {
    SHEET_GATES: ["Name"],
    SHEET_CONDITIONS: ["Gate", "Metric", "Error"],
    SHEET_PROFILES: ["Name", "Language"],
    SHEET_RULES: ["Profile", "Rule"],
    SHEET_SETTINGS: ["Key"],
}


@dataclass
class Manifest:
    quality_gates: List[QualityGateSpec] = field(default_factory=list)
    quality_profiles: List[QualityProfileSpec] = field(default_factory=list)
    settings: List[SettingsSpec] = field(default_factory=list)
    source: str = ""

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "qualityGates": [g.to_dict() for g in self.quality_gates],
            "qualityProfiles": [p.to_dict() for p in self.quality_profiles],
        }
        if self.settings:
            out["settings"] = [s.to_dict() for s in self.settings]
        return out


# =========================
# YAML
# =========================

def _load_yaml(path: str) -> Manifest:
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ManifestError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ManifestError(f"Top-level YAML must be a mapping: {path}")

    gates = data.get("qualityGates") or []
    profiles = data.get("qualityProfiles") or []
    settings = data.get("settings") or []
    if not all(isinstance(x, list) for x in (gates, profiles, settings)):
        raise ManifestError(f"'qualityGates', 'qualityProfiles' and 'settings' must be lists: {path}")
    try:
        return Manifest(
            quality_gates=[QualityGateSpec.from_dict(g) for g in gates],
            quality_profiles=[QualityProfileSpec.from_dict(p) for p in profiles],
            settings=[SettingsSpec.from_dict(s) for s in settings],
            source=path,
        )
    except (AttributeError, ValueError) as e:
        raise ManifestError(f"Malformed entry in {path}: {e}") from e


# =========================
# XLSX
# =========================

def require_sheets(sheets: Dict[str, pd.DataFrame], required: Iterable[str]) -> None:
    missing = [s for s in required if s not in sheets]
    if missing:
        raise ManifestError(f"Missing required sheets: {', '.join(missing)}")


def require_columns(df: pd.DataFrame, required: Iterable[str], context: Optional[str] = None) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        prefix = f"{context}: " if context else ""
        raise ManifestError(f"{prefix}Missing required columns: {', '.join(missing)}")


def _records(df: pd.DataFrame) -> List[Dict[str, Optional[str]]]:
    """Rows as dicts; blank cells become None."""
    rows = []
    for rec in df.to_dict(orient="records"):
        row = {}
        for k, v in rec.items():
            if v is None or (not isinstance(v, str) and pd.isna(v)):
                row[str(k)] = None
            else:
                s = str(v).strip()
                row[str(k)] = s or None
        if any(v is not None for v in row.values()):
            rows.append(row)
    return rows


def parse_pairs(value: Optional[str]) -> Optional[Dict[str, str]]:
    """'a=1;b=2' -> {'a': '1', 'b': '2'}; blank -> None."""
    if not value:
        return None
    out: Dict[str, str] = {}
    for piece in value.split(";"):
        piece = piece.strip()
        if not piece:
            continue
        if "=" not in piece:
            raise ManifestError(f"Expected key=value, got {piece!r}")
        k, v = piece.split("=", 1)
        out[k.strip()] = v.strip()
    return out or None


def parse_list(value: Optional[str]) -> Optional[List[str]]:
    """'a; b' -> ['a', 'b']; blank -> None."""
    if not value:
        return None
    return [piece.strip() for piece in value.split(";") if piece.strip()] or None


def _load_xlsx(path: str) -> Manifest:
    try:
        sheets = pd.read_excel(path, sheet_name=None, engine="openpyxl", dtype=str)
    except Exception as exc:
        raise ManifestError(f"Failed to read {path}: {exc}") from exc

    if not any(s in sheets for s in (SHEET_GATES, SHEET_PROFILES, SHEET_SETTINGS)):
        raise ManifestError(
            f"{path}: workbook needs a '{SHEET_GATES}', '{SHEET_PROFILES}' or '{SHEET_SETTINGS}' sheet"
        )
    if SHEET_CONDITIONS in sheets:
        require_sheets(sheets, [SHEET_GATES])
    if SHEET_RULES in sheets:
        require_sheets(sheets, [SHEET_PROFILES])
    for name, cols in REQUIRED_COLUMNS.items():
        if name in sheets:
            require_columns(sheets[name], cols, context=name)

    manifest = Manifest(source=path)

    gates: Dict[str, QualityGateSpec] = {}
    for row in _records(sheets[SHEET_GATES]) if SHEET_GATES in sheets else []:
        gate = QualityGateSpec.from_dict({"name": row.get("Name"), "default": row.get("Default")})
        if gate.name in gates:
            raise ManifestError(f"{SHEET_GATES}: duplicate gate '{gate.name}'")
        gates[gate.name] = gate
        manifest.quality_gates.append(gate)

    for row in _records(sheets[SHEET_CONDITIONS]) if SHEET_CONDITIONS in sheets else []:
        gate = gates.get(row.get("Gate") or "")
        if gate is None:
            raise ManifestError(f"{SHEET_CONDITIONS}: unknown gate '{row.get('Gate')}'")
        gate.conditions.append(
            ConditionSpec.from_dict(
                {"metric": row.get("Metric"), "op": row.get("Op"), "error": row.get("Error"), "id": row.get("Id")}
            )
        )

    profiles: Dict[str, QualityProfileSpec] = {}
    for row in _records(sheets[SHEET_PROFILES]) if SHEET_PROFILES in sheets else []:
        profile = QualityProfileSpec.from_dict(
            {"name": row.get("Name"), "language": row.get("Language"), "key": row.get("Key"), "default": row.get("Default")}
        )
        if profile.name in profiles:
            raise ManifestError(f"{SHEET_PROFILES}: duplicate profile '{profile.name}'")
        profiles[profile.name] = profile
        manifest.quality_profiles.append(profile)

    for row in _records(sheets[SHEET_RULES]) if SHEET_RULES in sheets else []:
        profile = profiles.get(row.get("Profile") or "")
        if profile is None:
            raise ManifestError(f"{SHEET_RULES}: unknown profile '{row.get('Profile')}'")
        profile.rules.append(
            RuleSpec.from_dict(
                {
                    "rule": row.get("Rule"),
                    "severity": row.get("Severity"),
                    "prioritized": row.get("Prioritized"),
                    "impacts": parse_pairs(row.get("Impacts")),
                    "params": parse_pairs(row.get("Params")),
                }
            )
        )

    scopes: Dict[str, SettingsSpec] = {}
    for row in _records(sheets[SHEET_SETTINGS]) if SHEET_SETTINGS in sheets else []:
        component = row.get("Component") or ""
        scope = scopes.get(component)
        if scope is None:
            scope = scopes[component] = SettingsSpec(component=component or None)
            manifest.settings.append(scope)
        if str(row.get("Prune") or "").lower() in {"1", "true", "yes", "y", "on"}:
            scope.prune = True
        scope.settings.append(
            SettingSpec(
                key=row.get("Key") or "",
                value=row.get("Value"),
                values=parse_list(row.get("Values")),
                field_values=parse_pairs(row.get("FieldValues")),
            )
        )

    return manifest


# =========================
# Validation / public API
# =========================

def validate_manifest(manifest: Manifest) -> None:
    """Names are required; keys must be unique within each parent (gate, profile, settings scope)."""
    for gate in manifest.quality_gates:
        if not gate.name:
            raise ManifestError("Quality gate without a name")
        ids = set()
        keys = set()
        for cond in gate.conditions:
            if not cond.metric:
                raise ManifestError(f"Quality gate '{gate.name}': condition without a metric")
            if cond.id:
                if cond.id in ids:
                    raise ManifestError(f"Quality gate '{gate.name}': duplicate condition id {cond.id}")
                ids.add(cond.id)
            key = (cond.metric, cond.op)
            if key in keys:
                raise ManifestError(
                    f"Quality gate '{gate.name}': duplicate condition {cond.metric} {cond.op or '*'}"
                )
            keys.add(key)

    seen_profiles = set()
    for profile in manifest.quality_profiles:
        if not profile.name or not profile.language:
            raise ManifestError(f"Quality profile needs a name and a language: {profile.name!r}")
        pkey = (profile.name, profile.language)
        if pkey in seen_profiles:
            raise ManifestError(f"Duplicate quality profile {profile.name} ({profile.language})")
        seen_profiles.add(pkey)
        rules = set()
        for rule in profile.rules:
            if not rule.rule:
                raise ManifestError(f"Quality profile '{profile.name}': rule without a key")
            if rule.rule in rules:
                raise ManifestError(f"Quality profile '{profile.name}': duplicate rule {rule.rule}")
            rules.add(rule.rule)

    seen_scopes = set()
    for scope in manifest.settings:
        if scope.scope in seen_scopes:
            raise ManifestError(f"Settings for {scope.scope} declared twice")
        seen_scopes.add(scope.scope)
        keys = set()
        for setting in scope.settings:
            if not setting.key:
                raise ManifestError(f"Settings for {scope.scope}: setting without a key")
            if setting.key in keys:
                raise ManifestError(f"Settings for {scope.scope}: duplicate setting {setting.key}")
            keys.add(setting.key)
            given = [v for v in (setting.value, setting.values, setting.field_values) if v is not None]
            if len(given) != 1:
                raise ManifestError(
                    f"Settings for {scope.scope}: {setting.key} needs exactly one of value, values or fieldValues"
                )


def load_manifest(path: str) -> Manifest:
    if not os.path.isfile(path):
        raise ManifestError(f"Manifest not found: {path}")
    ext = os.path.splitext(path)[1].lower()
    if ext in (".yml", ".yaml"):
        manifest = _load_yaml(path)
    elif ext in (".xlsx", ".xlsm"):
        manifest = _load_xlsx(path)
    else:
        raise ManifestError(f"Unsupported manifest type '{ext}': {path}")
    validate_manifest(manifest)
    return manifest


def save_manifest(manifest: Manifest, path: str) -> None:
    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(manifest.to_dict(), f, sort_keys=False, allow_unicode=True)


def write_back_path(manifest: Manifest) -> str:
    """Where a late-initialized manifest goes: the source itself for YAML, a sibling .yml for XLSX."""
    root, ext = os.path.splitext(manifest.source)
    if ext.lower() in (".yml", ".yaml"):
        return manifest.source
    return f"{root}.resolved.yml"
