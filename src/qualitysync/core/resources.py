"""
Parent resources: quality gates, quality profiles and settings scopes.

Each parent owns a child collection that is reconciled by the engine:
  - gate    -> conditions (GATE_CONDITIONS)
  - profile -> rule activations (PROFILE_RULES)
  - scope   -> setting values (SETTINGS); a scope always exists, so there
               is no ensure_settings

observe_*  late-initializes the spec and reports drift (no writes)
ensure_*   creates the parent when it does not exist yet
update_*   pushes parent fields, then syncs the children
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Optional

from qualitysync.core import ports
from qualitysync.core.compare import assign_if_unset, optional_equal
from qualitysync.core.errors import PreconditionError
from qualitysync.core.kinds import GATE_CONDITIONS, PROFILE_RULES, SETTINGS
from qualitysync.core.models import (
    QualityGateObservation,
    QualityGateSpec,
    QualityProfileObservation,
    QualityProfileSpec,
    SettingsObservation,
    SettingsSpec,
)
from qualitysync.core.reconciler import ChildReconciler, ReconciliationReport
from qualitysync.core.sonar_client import SonarClient


# =========================
# Quality gates
# =========================

def observe_quality_gate(
    spec: QualityGateSpec,
    observation: QualityGateObservation,
    *,
    logger: Optional[logging.Logger] = None,
) -> ReconciliationReport:
    default_set = assign_if_unset(spec, "default", observation.is_default)
    report = ChildReconciler(GATE_CONDITIONS, logger=logger).observe(spec.conditions, observation.conditions)
    parent_current = spec.name == observation.name and optional_equal(spec.default, observation.is_default)
    return replace(
        report,
        resource_up_to_date=parent_current and report.resource_up_to_date,
        parent_up_to_date=parent_current,
        resource_late_initialized=default_set or report.resource_late_initialized,
    )


def ensure_quality_gate(
    client: SonarClient,
    spec: QualityGateSpec,
    *,
    logger: Optional[logging.Logger] = None,
) -> QualityGateObservation:
    log = logger or logging.getLogger("qs.resources")
    observation = ports.fetch_quality_gate(client, spec.name)
    if observation is not None:
        return observation
    log.info("Quality gate %s not found; creating it", spec.name)
    ports.create_quality_gate(client, spec.name)
    if spec.default:
        ports.set_default_quality_gate(client, spec.name)
    observation = ports.fetch_quality_gate(client, spec.name)
    if observation is None:
        raise PreconditionError(f"Quality gate {spec.name} still missing after creation")
    return observation


def update_quality_gate(
    client: SonarClient,
    spec: QualityGateSpec,
    observation: QualityGateObservation,
    *,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, int]:
    """Run observe_quality_gate first so condition ids are resolved."""
    log = logger or logging.getLogger("qs.resources")
    name = observation.name
    if not name:
        raise PreconditionError(f"external name is not set for quality gate {spec.name}")

    if spec.default and not observation.is_default:
        ports.set_default_quality_gate(client, name)
        log.info("Quality gate %s set as default", name)

    reconciler = ChildReconciler(GATE_CONDITIONS, logger=logger)
    report = reconciler.observe(spec.conditions, observation.conditions)
    return reconciler.apply(name, report.associations, ports.GateConditionPort(client))


# =========================
# Quality profiles
# =========================

def observe_quality_profile(
    spec: QualityProfileSpec,
    observation: QualityProfileObservation,
    *,
    logger: Optional[logging.Logger] = None,
) -> ReconciliationReport:
    key_set = assign_if_unset(spec, "key", observation.key)
    default_set = assign_if_unset(spec, "default", observation.is_default)
    report = ChildReconciler(PROFILE_RULES, logger=logger).observe(spec.rules, observation.rules)
    parent_current = (
        spec.name == observation.name
        and spec.language == observation.language
        and optional_equal(spec.default, observation.is_default)
    )
    return replace(
        report,
        resource_up_to_date=parent_current and report.resource_up_to_date,
        parent_up_to_date=parent_current,
        resource_late_initialized=key_set or default_set or report.resource_late_initialized,
    )


def lookup_quality_profile(
    client: SonarClient,
    spec: QualityProfileSpec,
    *,
    page_size: int = ports.DEFAULT_PAGE_SIZE,
) -> Optional[QualityProfileObservation]:
    """By key when known, else by name + language."""
    key = spec.key or ports.find_quality_profile_key(client, spec.name, spec.language)
    if not key:
        return None
    return ports.fetch_quality_profile(client, key, page_size)


def ensure_quality_profile(
    client: SonarClient,
    spec: QualityProfileSpec,
    *,
    page_size: int = ports.DEFAULT_PAGE_SIZE,
    logger: Optional[logging.Logger] = None,
) -> QualityProfileObservation:
    log = logger or logging.getLogger("qs.resources")
    observation = lookup_quality_profile(client, spec, page_size=page_size)
    if observation is not None:
        return observation
    log.info("Quality profile %s (%s) not found; creating it", spec.name, spec.language)
    spec.key = ports.create_quality_profile(client, spec.name, spec.language)
    if spec.default:
        ports.set_default_quality_profile(client, spec.name, spec.language)
    observation = ports.fetch_quality_profile(client, spec.key, page_size)
    if observation is None:
        raise PreconditionError(f"Quality profile {spec.name} still missing after creation")
    return observation


def update_quality_profile(
    client: SonarClient,
    spec: QualityProfileSpec,
    observation: QualityProfileObservation,
    *,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, int]:
    """Run observe_quality_profile first so the profile key is known."""
    log = logger or logging.getLogger("qs.resources")
    key = spec.key or observation.key
    if not key:
        raise PreconditionError(f"external name is not set for quality profile {spec.name}")

    if spec.name != observation.name:
        ports.rename_quality_profile(client, key, spec.name)
        log.info("Quality profile %s renamed to %s", observation.name, spec.name)
    if spec.default and not observation.is_default:
        ports.set_default_quality_profile(client, spec.name, spec.language)
        log.info("Quality profile %s set as default for %s", spec.name, spec.language)

    reconciler = ChildReconciler(PROFILE_RULES, logger=logger)
    report = reconciler.observe(spec.rules, observation.rules)
    return reconciler.apply(key, report.associations, ports.ProfileRulePort(client, key))


# =========================
# Settings
# =========================

def lookup_settings(client: SonarClient, spec: SettingsSpec) -> SettingsObservation:
    """
    Only the declared keys are observed, unless `prune` is set: then every
    value set at this scope is observed too, so undeclared ones get reset.
    Inherited values of undeclared keys are never observed.
    """
    declared = {s.key for s in spec.settings}
    if spec.prune:
        fetched = ports.fetch_settings(client, spec.component)
        observed = [s for s in fetched if s.key in declared or not s.inherited]
    elif declared:
        fetched = ports.fetch_settings(client, spec.component, [s.key for s in spec.settings])
        observed = [s for s in fetched if s.key in declared]
    else:
        observed = []
    return SettingsObservation(component=spec.component, settings=observed)


def observe_settings(
    spec: SettingsSpec,
    observation: SettingsObservation,
    *,
    logger: Optional[logging.Logger] = None,
) -> ReconciliationReport:
    return ChildReconciler(SETTINGS, logger=logger).observe(spec.settings, observation.settings)


def update_settings(
    client: SonarClient,
    spec: SettingsSpec,
    observation: SettingsObservation,
    *,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, int]:
    reconciler = ChildReconciler(SETTINGS, logger=logger)
    report = reconciler.observe(spec.settings, observation.settings)
    return reconciler.apply(spec.scope, report.associations, ports.SettingsPort(client, spec.component))
