"""
Command-line interface for QualitySync.

Usage (examples):
  - Show drift between a manifest and SonarQube (read-only):
      qsync plan --manifest ./quality.yml --base-url https://sonar.local --token $TOKEN

  - Converge SonarQube towards the manifest and persist resolved ids:
      qsync apply --manifest ./quality.yml --base-url https://sonar.local --token $TOKEN --write-back

Exit codes:
  plan   0 everything current | 1 drift found | 2 errors
  apply  0 converged          | 2 errors (partial progress, run again)
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .core.config import AppConfig, load_config
from .core.errors import ReconcileError, SyncError
from .core.kinds import GATE_CONDITIONS, PROFILE_RULES, SETTINGS
from .core.logging_setup import build_logger, with_context
from .core.manifest import Manifest, ManifestError, load_manifest, save_manifest, write_back_path
from .core.ports import fetch_quality_gate
from .core.reporting import build_rows, print_rows, summarize_counts
from .core.resources import (
    ensure_quality_gate,
    ensure_quality_profile,
    lookup_quality_profile,
    lookup_settings,
    observe_quality_gate,
    observe_quality_profile,
    observe_settings,
    update_quality_gate,
    update_quality_profile,
    update_settings,
)
from .core.sonar_client import HttpError, SonarClient

RESOURCE_GATE = "quality gate"
RESOURCE_PROFILE = "quality profile"
RESOURCE_SETTINGS = "settings"


def _accumulate(total: Dict[str, int], counts: Dict[str, int]) -> None:
    for k, v in counts.items():
        total[k] = total.get(k, 0) + v


def _error_row(resource_kind: str, resource: str, err: Exception) -> Dict[str, Any]:
    return {"resource": resource, "kind": resource_kind, "status": "error", "error": str(err)}


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="qsync", description="Reconcile SonarQube quality gates, quality profiles and settings")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--manifest", default=None, help="Desired state (.yml or .xlsx)")
    common.add_argument("--config", default=None, help="Config file (defaults: ./qualitysync.yml, ...)")
    common.add_argument("--write-back", action="store_true", help="Persist resolved ids into the manifest")
    common.add_argument("--format", dest="fmt", default="table", choices=["table", "json"], help="Report format")

    # SonarQube / HTTP
    common.add_argument("--base-url", default=None, help="SonarQube base URL")
    common.add_argument("--token", default=None, help="SonarQube user token")
    common.add_argument("--verify-tls", default=None, choices=["true", "false"], help="Verify TLS (https)")
    common.add_argument("--timeout-sec", type=int, default=None, help="HTTP timeout seconds")
    common.add_argument("--retries", type=int, default=None, help="HTTP retries (5xx/network)")
    common.add_argument("--page-size", type=int, default=None, help="Page size for rule searches")

    # Logging
    common.add_argument("--logs-dir", default=None, help="Logs base directory")
    common.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    common.add_argument("--file-level", default=None, help="File log level (DEBUG..CRITICAL)")

    sub = p.add_subparsers(dest="cmd", required=True)
    sub.add_parser("plan", parents=[common], help="Report drift without changing anything")
    a = sub.add_parser("apply", parents=[common], help="Create, update and delete to match the manifest")
    a.add_argument("--dry-run", action="store_true", help="Same as plan")
    return p


def _cli_overrides(args: argparse.Namespace, dry_run: bool) -> Dict[str, Any]:
    """Only flags actually given override file/env values."""
    sections: Dict[str, Dict[str, Any]] = {
        "app": {"dry_run": dry_run},
        "sonar": {
            "base_url": args.base_url,
            "token": args.token,
            "verify_tls": None if args.verify_tls is None else args.verify_tls == "true",
            "timeout_sec": args.timeout_sec,
            "retries": args.retries,
            "page_size": args.page_size,
        },
        "logging": {
            "base_dir": args.logs_dir,
            "console_level": args.console_level,
            "file_level": args.file_level,
        },
        "inputs": {"manifest_path": args.manifest, "write_back": True if args.write_back else None},
    }
    return {name: {k: v for k, v in values.items() if v is not None} for name, values in sections.items()}


def _client(cfg: AppConfig, logger: logging.LoggerAdapter) -> SonarClient:
    return SonarClient(
        base_url=cfg.sonar.base_url,
        token=cfg.sonar.token,
        verify_tls=bool(cfg.sonar.verify_tls),
        timeout_sec=int(cfg.sonar.timeout_sec),
        retries=int(cfg.sonar.retries),
        logger=logger,
    )


def _write_back(manifest: Manifest, logger: logging.LoggerAdapter) -> None:
    path = write_back_path(manifest)
    save_manifest(manifest, path)
    logger.info("Manifest written back to %s", path)


# ---------- plan ----------

def _plan(
    manifest: Manifest, client: SonarClient, cfg: AppConfig, logger: logging.LoggerAdapter
) -> Tuple[List[Dict[str, Any]], bool, bool, int]:
    """Returns (rows, drift, late_initialized, errors)."""
    rows: List[Dict[str, Any]] = []
    drift = False
    late = False
    errors = 0

    for gate in manifest.quality_gates:
        glog = with_context(logger, kind="gate", resource=gate.name)
        try:
            observation = fetch_quality_gate(client, gate.name)
            report = observe_quality_gate(gate, observation, logger=glog) if observation is not None else None
        except (HttpError, ReconcileError) as e:
            glog.error("Plan failed: %s", e)
            rows.append(_error_row(RESOURCE_GATE, gate.name, e))
            errors += 1
            continue
        rows.extend(build_rows(RESOURCE_GATE, gate.name, report, GATE_CONDITIONS))
        drift = drift or report is None or not report.resource_up_to_date
        late = late or (report is not None and report.resource_late_initialized)

    for profile in manifest.quality_profiles:
        plog = with_context(logger, kind="profile", resource=profile.name)
        try:
            observation = lookup_quality_profile(client, profile, page_size=cfg.sonar.page_size)
            report = observe_quality_profile(profile, observation, logger=plog) if observation is not None else None
        except (HttpError, ReconcileError) as e:
            plog.error("Plan failed: %s", e)
            rows.append(_error_row(RESOURCE_PROFILE, profile.name, e))
            errors += 1
            continue
        rows.extend(build_rows(RESOURCE_PROFILE, profile.name, report, PROFILE_RULES))
        drift = drift or report is None or not report.resource_up_to_date
        late = late or (report is not None and report.resource_late_initialized)

    for scope in manifest.settings:
        slog = with_context(logger, kind="settings", resource=scope.scope)
        try:
            report = observe_settings(scope, lookup_settings(client, scope), logger=slog)
        except (HttpError, ReconcileError) as e:
            slog.error("Plan failed: %s", e)
            rows.append(_error_row(RESOURCE_SETTINGS, scope.scope, e))
            errors += 1
            continue
        rows.extend(build_rows(RESOURCE_SETTINGS, scope.scope, report, SETTINGS))
        drift = drift or not report.resource_up_to_date

    return rows, drift, late, errors


def _plan_cmd(args: argparse.Namespace, cfg: AppConfig, manifest: Manifest, logger: logging.LoggerAdapter) -> int:
    rows, drift, late, errors = _plan(manifest, _client(cfg, logger), cfg, logger)
    print_rows(rows, fmt=args.fmt)
    logger.info("Plan done: drift=%s late_initialized=%s errors=%d", drift, late, errors)
    if late and cfg.inputs.write_back:
        _write_back(manifest, logger)
    if errors:
        return 2
    return 1 if drift else 0


# ---------- apply ----------

def _apply_cmd(args: argparse.Namespace, cfg: AppConfig, manifest: Manifest, logger: logging.LoggerAdapter) -> int:
    client = _client(cfg, logger)
    rows: List[Dict[str, Any]] = []
    total: Dict[str, int] = {}

    for gate in manifest.quality_gates:
        glog = with_context(logger, kind="gate", resource=gate.name)
        row: Dict[str, Any] = {"resource": gate.name, "kind": RESOURCE_GATE}
        counts: Dict[str, int] = {}
        try:
            observation = ensure_quality_gate(client, gate, logger=glog)
            observe_quality_gate(gate, observation, logger=glog)
            counts = update_quality_gate(client, gate, observation, logger=glog)
            # pick up the ids of the conditions just created
            fresh = fetch_quality_gate(client, gate.name)
            if fresh is not None:
                observe_quality_gate(gate, fresh, logger=glog)
            row["status"] = "ok"
        except SyncError as e:
            counts = dict(e.counts, ERROR=len(e.failures))
            row.update(status="error", error=str(e))
        except (HttpError, ReconcileError) as e:
            glog.error("Apply failed: %s", e)
            counts = {"ERROR": 1}
            row.update(status="error", error=str(e))
        row.update(deleted=counts.get("DELETED", 0), created=counts.get("CREATED", 0), updated=counts.get("UPDATED", 0))
        _accumulate(total, counts)
        rows.append(row)

    for profile in manifest.quality_profiles:
        plog = with_context(logger, kind="profile", resource=profile.name)
        row = {"resource": profile.name, "kind": RESOURCE_PROFILE}
        counts = {}
        try:
            observation = ensure_quality_profile(client, profile, page_size=cfg.sonar.page_size, logger=plog)
            observe_quality_profile(profile, observation, logger=plog)
            counts = update_quality_profile(client, profile, observation, logger=plog)
            row["status"] = "ok"
        except SyncError as e:
            counts = dict(e.counts, ERROR=len(e.failures))
            row.update(status="error", error=str(e))
        except (HttpError, ReconcileError) as e:
            plog.error("Apply failed: %s", e)
            counts = {"ERROR": 1}
            row.update(status="error", error=str(e))
        row.update(deleted=counts.get("DELETED", 0), created=counts.get("CREATED", 0), updated=counts.get("UPDATED", 0))
        _accumulate(total, counts)
        rows.append(row)

    for scope in manifest.settings:
        slog = with_context(logger, kind="settings", resource=scope.scope)
        row = {"resource": scope.scope, "kind": RESOURCE_SETTINGS}
        counts = {}
        try:
            counts = update_settings(client, scope, lookup_settings(client, scope), logger=slog)
            row["status"] = "ok"
        except SyncError as e:
            counts = dict(e.counts, ERROR=len(e.failures))
            row.update(status="error", error=str(e))
        except (HttpError, ReconcileError) as e:
            slog.error("Apply failed: %s", e)
            counts = {"ERROR": 1}
            row.update(status="error", error=str(e))
        row.update(deleted=counts.get("DELETED", 0), created=counts.get("CREATED", 0), updated=counts.get("UPDATED", 0))
        _accumulate(total, counts)
        rows.append(row)

    print_rows(rows, fmt=args.fmt)
    logger.info("Apply summary: %s", summarize_counts(total))
    if cfg.inputs.write_back:
        _write_back(manifest, logger)
    return 2 if total.get("ERROR", 0) else 0


# ---------- entry point ----------

def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    action = args.cmd
    dry_run = action == "plan" or bool(getattr(args, "dry_run", False))
    files = {"files": (args.config,)} if args.config else {}
    try:
        cfg = load_config(_cli_overrides(args, dry_run), **files)
    except ValueError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return 2

    logger = build_logger(
        run_id=cfg.run_id,
        action="plan" if dry_run else "apply",
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
    )
    logger.info("Starting qsync %s (dry_run=%s)", action, cfg.app.dry_run)

    try:
        manifest = load_manifest(cfg.inputs.manifest_path)
    except ManifestError as e:
        logger.error("Manifest error: %s", e)
        return 2
    logger.info(
        "Loaded %d quality gate(s), %d quality profile(s) and %d settings scope(s) from %s",
        len(manifest.quality_gates),
        len(manifest.quality_profiles),
        len(manifest.settings),
        manifest.source,
    )

    try:
        if dry_run:
            return _plan_cmd(args, cfg, manifest, logger)
        return _apply_cmd(args, cfg, manifest, logger)
    except ValueError as e:
        logger.error("%s", e)
        return 2


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
