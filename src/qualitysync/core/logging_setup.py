"""
Central logging for QualitySync.

- Console handler on stderr: INFO..CRITICAL by default
- Daily rotated file handler: DEBUG (logs/app.log)
- Per-run action file: DEBUG (logs/YYYY-MM-DD/<action>_<run_id>.log)
- Secret redaction in messages and %-args (bearer tokens, passwords, api keys)
- UTC timestamps in ISO-8601
- Context extras: run_id, action, kind, resource
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

CONTEXT_FIELDS = ("run_id", "action", "kind", "resource")

LOG_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "run=%(run_id)s action=%(action)s kind=%(kind)s resource=%(resource)s | "
    "%(message)s"
)


class MaskSecretsFilter(logging.Filter):
    """Redact bearer tokens, API keys and passwords from log records."""

    _patterns = [
        re.compile(r"(Authorization:\s*Bearer\s+)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(Bearer\s+)([A-Za-z0-9._-]{8,})", re.IGNORECASE),
        re.compile(r"(api[_-]?key\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(password\s*[=:]\s*)([^,\s]+)", re.IGNORECASE),
        re.compile(r"(\btoken\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
    ]

    @classmethod
    def mask(cls, text: str) -> str:
        for pat in cls._patterns:
            text = pat.sub(r"\1***REDACTED***", text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, dict):
            record.args = {k: self.mask(v) if isinstance(v, str) else v for k, v in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(self.mask(a) if isinstance(a, str) else a for a in record.args)
        if isinstance(record.msg, str):
            record.msg = self.mask(record.msg)
        return True


class ContextDefaultsFilter(logging.Filter):
    """Fill missing context fields so records from plain module loggers still format."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, "-")
        return True


def _utc_formatter(fmt: str) -> logging.Formatter:
    f = logging.Formatter(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%SZ")
    f.converter = time.gmtime  # type: ignore[assignment]
    return f


def _level(name: str, fallback: int) -> int:
    return getattr(logging, str(name).upper(), fallback)


def _prepare(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(ContextDefaultsFilter())
    handler.addFilter(MaskSecretsFilter())
    return handler


def _drop_handlers(logger: logging.Logger, kind: type, keep: Optional[str] = None) -> bool:
    """
    Remove handlers of `kind` from `logger`, except a file handler writing to
    `keep`. Returns True when a handler for `keep` is still attached.
    """
    kept = False
    for h in list(logger.handlers):
        if type(h) is not kind:
            continue
        if keep is not None and os.path.abspath(getattr(h, "baseFilename", "")) == keep:
            kept = True
            continue
        logger.removeHandler(h)
        h.close()
    return kept


def _bind_console(base: logging.Logger, level: str, formatter: logging.Formatter) -> None:
    # stderr may be swapped between calls (pytest capture); always rebind
    _drop_handlers(base, logging.StreamHandler)
    base.addHandler(_prepare(logging.StreamHandler(stream=sys.stderr), _level(level, logging.INFO), formatter))


def _bind_app_file(base: logging.Logger, base_dir: str, level: str, formatter: logging.Formatter) -> None:
    os.makedirs(base_dir, exist_ok=True)
    target = os.path.abspath(os.path.join(base_dir, "app.log"))
    if _drop_handlers(base, logging.handlers.TimedRotatingFileHandler, keep=target):
        return
    handler = logging.handlers.TimedRotatingFileHandler(
        target, when="midnight", backupCount=14, encoding="utf-8", utc=True, delay=False
    )
    base.addHandler(_prepare(handler, _level(level, logging.DEBUG), formatter))


def _bind_action_file(child: logging.Logger, base_dir: str, action: str, run_id: str, level: str, formatter: logging.Formatter) -> None:
    today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    dated_dir = os.path.join(base_dir, today)
    os.makedirs(dated_dir, exist_ok=True)
    target = os.path.abspath(os.path.join(dated_dir, f"{action}_{run_id}.log"))
    if _drop_handlers(child, logging.FileHandler, keep=target):
        return
    Path(target).touch(exist_ok=True)
    child.addHandler(_prepare(logging.FileHandler(target, encoding="utf-8"), _level(level, logging.DEBUG), formatter))


def build_logger(
    *,
    name: str = "qs",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """
    Configure logging for one run and return a LoggerAdapter.

    A base logger `<name>` owns the console and rotating file handlers, and
    every `<name>.*` module logger propagates into it. The child logger
    `<name>.<action>.<run_id>` adds the per-run file.
    """
    formatter = _utc_formatter(LOG_FORMAT)

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)
    _bind_console(base, console_level, formatter)
    _bind_app_file(base, base_dir, file_level, formatter)

    child = logging.getLogger(f"{name}.{action}.{run_id}")
    child.setLevel(logging.DEBUG)
    child.propagate = True
    _bind_action_file(child, base_dir, action, run_id, file_level, formatter)

    context = {"run_id": run_id, "action": action, "kind": "-", "resource": "-"}
    context.update({k: v for k, v in (extra or {}).items() if k in CONTEXT_FIELDS and v is not None})
    adapter = logging.LoggerAdapter(child, context)
    adapter.debug("Logger initialised")
    return adapter


def with_context(adapter: logging.LoggerAdapter, **fields: Any) -> logging.LoggerAdapter:
    """Same underlying logger, updated extras (e.g. kind/resource per parent)."""
    context = dict(adapter.extra or {})
    context.update({k: v for k, v in fields.items() if v is not None})
    return logging.LoggerAdapter(adapter.logger, context)
