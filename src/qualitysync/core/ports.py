"""
SonarQube side of the reconciliation.

Fetchers (observed collections, fully paginated before reconciling):
  - fetch_quality_gate(client, name)
  - find_quality_profile_key(client, name, language)
  - fetch_quality_profile(client, key, page_size)
  - fetch_profile_rules(client, profile_key, page_size)
  - fetch_settings(client, component, keys)

Mutation ports handed to the sync driver:
  - GateConditionPort(client)
  - ProfileRulePort(client, profile_key)
  - SettingsPort(client, component)      set on create/update, reset on delete

Parent helpers:
  - create_quality_gate / set_default_quality_gate
  - create_quality_profile / set_default_quality_profile / rename_quality_profile

Fetchers return None when the parent does not exist (HTTP 404).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from qualitysync.core.models import (
    ConditionObservation,
    ConditionSpec,
    QualityGateObservation,
    QualityProfileObservation,
    RuleObservation,
    RuleSpec,
    SettingObservation,
    SettingSpec,
)
from qualitysync.core.sonar_client import HttpError, SonarClient

DEFAULT_PAGE_SIZE = 500

log = logging.getLogger("qs.ports")


def _pairs(values: Dict[str, str]) -> str:
    """{"a": "1", "b": "2"} -> "a=1;b=2" (sorted by key)."""
    return ";".join(f"{k}={values[k]}" for k in sorted(values))


# ---------- Fetchers ----------

def fetch_quality_gate(client: SonarClient, name: str) -> Optional[QualityGateObservation]:
    try:
        data = client.get_json("api/qualitygates/show", {"name": name})
    except HttpError as e:
        if e.status == 404:
            return None
        raise
    return QualityGateObservation.from_api(data)


def fetch_profile_rules(client: SonarClient, profile_key: str, page_size: int = DEFAULT_PAGE_SIZE) -> List[RuleObservation]:
    """All rules active in a profile. Pages until `paging.total` is reached or a page is empty."""
    rules: List[RuleObservation] = []
    page = 1
    while True:
        data = client.get_json(
            "api/rules/search",
            {"qprofile": profile_key, "activation": "true", "p": page, "ps": page_size},
        )
        batch = data.get("rules") or []
        rules.extend(RuleObservation.from_api(r) for r in batch if isinstance(r, dict))
        paging = data.get("paging") or {}
        total = int(paging.get("total", data.get("total", 0)) or 0)
        log.debug("rules page %d for %s: %d item(s), %d/%d", page, profile_key, len(batch), len(rules), total)
        if not batch or len(rules) >= total:
            return rules
        page += 1


def find_quality_profile_key(client: SonarClient, name: str, language: str) -> Optional[str]:
    data = client.get_json("api/qualityprofiles/search", {"language": language, "qualityProfile": name})
    for profile in data.get("profiles") or []:
        if profile.get("name") == name and profile.get("language") == language:
            return str(profile.get("key") or "") or None
    return None


def fetch_quality_profile(
    client: SonarClient, key: str, page_size: int = DEFAULT_PAGE_SIZE
) -> Optional[QualityProfileObservation]:
    try:
        data = client.get_json("api/qualityprofiles/show", {"key": key})
    except HttpError as e:
        if e.status == 404:
            return None
        raise
    profile = data.get("profile") or {}
    return QualityProfileObservation.from_api(profile, fetch_profile_rules(client, key, page_size))


def fetch_settings(
    client: SonarClient, component: Optional[str] = None, keys: Optional[Sequence[str]] = None
) -> List[SettingObservation]:
    """
    Values visible at one scope (global when `component` is None). Without
    `keys` every setting is returned, inherited ones included.
    """
    params: Dict[str, Any] = {}
    if keys:
        params["keys"] = ",".join(keys)
    if component:
        params["component"] = component
    data = client.get_json("api/settings/values", params)
    return [SettingObservation.from_api(s) for s in data.get("settings") or [] if isinstance(s, dict)]


# ---------- Mutation ports ----------

class GateConditionPort:
    def __init__(self, client: SonarClient) -> None:
        self.client = client

    @staticmethod
    def _payload(spec: ConditionSpec) -> Dict[str, str]:
        data = {"metric": spec.metric, "error": spec.error}
        if spec.op:
            data["op"] = spec.op
        return data

    def create_item(self, parent_key: str, desired: ConditionSpec) -> ConditionObservation:
        data = self._payload(desired)
        data["gateName"] = parent_key
        created = self.client.post_form("api/qualitygates/create_condition", data)
        merged = {"metric": desired.metric, "error": desired.error, "op": desired.op or ""}
        merged.update(created or {})
        observation = ConditionObservation.from_api(merged)
        if not observation.id:
            raise HttpError(status=0, url="api/qualitygates/create_condition", message="response carries no condition id")
        return observation

    def update_item(self, observed_id: str, desired: ConditionSpec) -> None:
        data = self._payload(desired)
        data["id"] = observed_id
        self.client.post_form("api/qualitygates/update_condition", data)

    def delete_item(self, observed_id: str) -> None:
        self.client.post_form("api/qualitygates/delete_condition", {"id": observed_id})


def activate_rule_payload(profile_key: str, spec: RuleSpec) -> Dict[str, str]:
    """Impacts take precedence over severity; impacts and params go as `k=v;k=v`. Unset fields are not sent."""
    data = {"key": profile_key, "rule": spec.rule}
    if spec.prioritized is not None:
        data["prioritizedRule"] = "true" if spec.prioritized else "false"
    if spec.impacts:
        data["impacts"] = _pairs(spec.impacts)
    elif spec.severity:
        data["severity"] = spec.severity
    if spec.params:
        data["params"] = _pairs(spec.params)
    return data


class ProfileRulePort:
    def __init__(self, client: SonarClient, profile_key: str) -> None:
        self.client = client
        self.profile_key = profile_key

    def create_item(self, parent_key: str, desired: RuleSpec) -> RuleObservation:
        self.client.post_form("api/qualityprofiles/activate_rule", activate_rule_payload(parent_key, desired))
        # activate_rule answers 204; the rule key is the identifier
        return RuleObservation(key=desired.rule, severity=desired.severity or "")

    def update_item(self, observed_id: str, desired: RuleSpec) -> None:
        self.client.post_form("api/qualityprofiles/activate_rule", activate_rule_payload(self.profile_key, desired))

    def delete_item(self, observed_id: str) -> None:
        self.client.post_form(
            "api/qualityprofiles/deactivate_rule",
            {"key": self.profile_key, "rule": observed_id},
        )


def set_setting_payload(component: Optional[str], spec: SettingSpec) -> Dict[str, Any]:
    """Multi values go as repeated `values`; field values as one JSON-encoded map."""
    data: Dict[str, Any] = {"key": spec.key}
    if component:
        data["component"] = component
    if spec.value is not None:
        data["value"] = spec.value
    if spec.values is not None:
        data["values"] = list(spec.values)
    if spec.field_values is not None:
        data["fieldValues"] = json.dumps(spec.field_values, sort_keys=True)
    return data


class SettingsPort:
    def __init__(self, client: SonarClient, component: Optional[str] = None) -> None:
        self.client = client
        self.component = component

    def create_item(self, parent_key: str, desired: SettingSpec) -> SettingObservation:
        # parent_key only names the scope; the component travels with the port
        self.client.post_form("api/settings/set", set_setting_payload(self.component, desired))
        return SettingObservation(
            key=desired.key,
            value=desired.value or "",
            values=list(desired.values or []),
            field_values=dict(desired.field_values or {}),
        )

    def update_item(self, observed_id: str, desired: SettingSpec) -> None:
        self.client.post_form("api/settings/set", set_setting_payload(self.component, desired))

    def delete_item(self, observed_id: str) -> None:
        data = {"keys": observed_id}
        if self.component:
            data["component"] = self.component
        self.client.post_form("api/settings/reset", data)


# ---------- Parent helpers ----------

def create_quality_gate(client: SonarClient, name: str) -> None:
    client.post_form("api/qualitygates/create", {"name": name})


def set_default_quality_gate(client: SonarClient, name: str) -> None:
    client.post_form("api/qualitygates/set_as_default", {"name": name})


def create_quality_profile(client: SonarClient, name: str, language: str) -> str:
    """Returns the new profile key."""
    data = client.post_form("api/qualityprofiles/create", {"name": name, "language": language})
    key = str((data.get("profile") or {}).get("key") or "")
    if not key:
        raise HttpError(status=0, url="api/qualityprofiles/create", message="response carries no profile key")
    return key


def set_default_quality_profile(client: SonarClient, name: str, language: str) -> None:
    client.post_form("api/qualityprofiles/set_default", {"qualityProfile": name, "language": language})


def rename_quality_profile(client: SonarClient, key: str, name: str) -> None:
    client.post_form("api/qualityprofiles/rename", {"key": key, "name": name})
