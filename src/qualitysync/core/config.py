from __future__ import annotations

import os
import re
import uuid
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional, Tuple, Type

import yaml
from dotenv import find_dotenv, load_dotenv


# ---------- Typed sections ----------

@dataclass
class AppSection:
    run_id: Optional[str] = None
    dry_run: bool = False


@dataclass
class SonarSection:
    base_url: str = ""
    token: str = ""          # secret, never log in clear text
    verify_tls: bool = True
    timeout_sec: int = 30
    retries: int = 3
    page_size: int = 500


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"
    file_level: str = "DEBUG"


@dataclass
class InputsSection:
    manifest_path: str = "./qualitysync-manifest.yml"
    write_back: bool = False


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    app: AppSection
    sonar: SonarSection
    logging: LoggingSection
    inputs: InputsSection

    @property
    def run_id(self) -> str:
        """Stable run identifier, generated on first access when not configured."""
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id


_SECTIONS: Dict[str, Type[Any]] = {
    "app": AppSection,
    "sonar": SonarSection,
    "logging": LoggingSection,
    "inputs": InputsSection,
}

_DEFAULT_FILES: Tuple[str, ...] = (
    "./qualitysync.yml",
    os.path.expanduser("~/.config/qualitysync/config.yml"),
    "/etc/qualitysync/config.yml",
)

_TRUTHY = {"1", "true", "yes", "y", "on"}
_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


# ---------- Layers ----------

def _overlay(base: Dict[str, Any], top: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Recursive merge into a new dict; mappings merge, anything else from `top` replaces."""
    merged: Dict[str, Any] = dict(base)
    for key, value in (top or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _overlay(merged[key], value)
        else:
            merged[key] = value
    return merged


def _file_layer(files: Tuple[str, ...]) -> Dict[str, Any]:
    """First existing YAML file wins; later candidates are not read."""
    path = next((p for p in files if os.path.exists(p)), None)
    if path is None:
        return {}
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML must be a mapping: {path}")
    return data


def _env_layer(prefix: str) -> Dict[str, Any]:
    """QSYNC_SONAR__BASE_URL=val -> {"sonar": {"base_url": "val"}}."""
    layer: Dict[str, Any] = {}
    for name, value in os.environ.items():
        if not name.startswith(prefix):
            continue
        *parents, leaf = name[len(prefix):].lower().split("__")
        node = layer
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
    return layer


def _expand(value: Any) -> Any:
    """${VAR} references inside strings; unset variables expand to ""."""
    if isinstance(value, dict):
        return {k: _expand(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand(v) for v in value]
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)
    return value


# ---------- Sections ----------

def _coerce(where: str, type_name: str, value: Any) -> Any:
    # field types are strings here (postponed annotations)
    if type_name == "bool" and not isinstance(value, bool):
        return str(value).strip().lower() in _TRUTHY
    if type_name == "int" and not isinstance(value, int):
        try:
            return int(str(value).strip())
        except ValueError:
            raise ValueError(f"Configuration key '{where}' must be an integer, got {value!r}")
    return value


def _section(name: str, values: Any) -> Any:
    cls = _SECTIONS[name]
    if not isinstance(values, dict):
        raise ValueError(f"Configuration section '{name}' must be a mapping")
    types = {f.name: f.type for f in fields(cls)}
    unknown = sorted(k for k in values if k not in types)
    if unknown:
        raise ValueError("Unknown configuration key: " + ", ".join(f"{name}.{k}" for k in unknown))
    return cls(**{k: _coerce(f"{name}.{k}", types[k], v) for k, v in values.items()})


def _validate(cfg: AppConfig) -> None:
    """Connection settings are only required when we are going to write."""
    if cfg.app.dry_run:
        return
    missing = [f"sonar.{k}" for k in ("base_url", "token") if not getattr(cfg.sonar, k)]
    if missing:
        raise ValueError("Missing required configuration for non-dry run: " + ", ".join(missing))


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "QSYNC_",
    use_dotenv: bool = True,
) -> AppConfig:
    """
    Build an AppConfig, highest precedence first:
      1) CLI overrides
      2) Environment variables (prefix QSYNC_, nested via __), after loading
         a `.env` file found from the working directory upwards
      3) YAML file (first existing)
      4) Section defaults

    ${ENV_VAR} references are expanded, values are coerced to the section
    field types, and connection settings are required unless dry_run.
    Raises ValueError.
    """
    if use_dotenv:
        load_dotenv(find_dotenv(usecwd=True) or "", override=False)

    layered: Dict[str, Any] = {name: asdict(cls()) for name, cls in _SECTIONS.items()}
    for layer in (_file_layer(files), _env_layer(env_prefix), cli_overrides):
        layered = _overlay(layered, layer)
    layered = _expand(layered)

    unknown = sorted(k for k in layered if k not in _SECTIONS)
    if unknown:
        raise ValueError("Unknown configuration key: " + ", ".join(unknown))

    cfg = AppConfig(**{name: _section(name, layered[name]) for name in _SECTIONS})
    _validate(cfg)
    return cfg
