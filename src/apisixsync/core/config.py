from __future__ import annotations

import os
import re
import uuid
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv

from .snapshot import DEFAULT_PROVENANCE, DEFAULT_SNAPSHOT_PATH


# ---------- Typed sections ----------

@dataclass
class AppSection:
    run_id: Optional[str] = None
    concurrency: int = 1


@dataclass
class GatewaySection:
    admin_url: str = ""
    prefix: str = "/apisix/admin/"
    api_key: str = ""        # secret – never log in clear text
    timeout_sec: int = 30
    verify_tls: bool = True
    upstream_template: str = ""


@dataclass
class ExportSection:
    path: str = DEFAULT_SNAPSHOT_PATH
    provenance: str = DEFAULT_PROVENANCE
    kinds: List[Any] = field(default_factory=list)


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"   # INFO..CRITICAL
    file_level: str = "DEBUG"     # DEBUG..CRITICAL


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    app: AppSection
    gateway: GatewaySection
    export: ExportSection
    logging: LoggingSection

    @property
    def run_id(self) -> str:
        """
        Return a stable run identifier for this process.
        Generated lazily when first accessed if not provided.
        """
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id


# ---------- Defaults ----------

_DEFAULT_FILES: Tuple[str, ...] = (
    "./apisixsync.yml",
    os.path.expanduser("~/.config/apisixsync/config.yml"),
    "/etc/apisixsync/config.yml",
)

_DEFAULTS: Dict[str, Any] = {
    "app": {"run_id": None, "concurrency": 1},
    "gateway": {
        "admin_url": "",
        "prefix": "/apisix/admin/",
        "api_key": "",
        "timeout_sec": 30,
        "verify_tls": True,
        "upstream_template": "",
    },
    "export": {"path": DEFAULT_SNAPSHOT_PATH, "provenance": DEFAULT_PROVENANCE, "kinds": []},
    "logging": {"base_dir": "logs", "console_level": "INFO", "file_level": "DEBUG"},
}


# ---------- Layers ----------

_ENV_REF = re.compile(r"\$\{(\w+)\}")
_BOOL_KEYS = {"verify_tls"}
_INT_KEYS = {"timeout_sec", "concurrency"}
_SECTIONS = {"app": AppSection, "gateway": GatewaySection, "export": ExportSection, "logging": LoggingSection}


def _merge(base: Dict[str, Any], layer: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Nested dicts merge; anything else in `layer` replaces the base value."""
    out = dict(base)
    for k, v in (layer or {}).items():
        out[k] = _merge(out[k], v) if isinstance(v, dict) and isinstance(out.get(k), dict) else v
    return out


def _file_layer(files: Tuple[str, ...]) -> Dict[str, Any]:
    path = next((p for p in files if os.path.exists(p)), None)
    if path is None:
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML must be a mapping: {path}")
    return data


def _env_layer(prefix: str) -> Dict[str, Any]:
    """APISIX_SYNC_GATEWAY__API_KEY=x -> {"gateway": {"api_key": "x"}}."""
    out: Dict[str, Any] = {}
    for key, val in os.environ.items():
        if key.startswith(prefix):
            *parents, leaf = key[len(prefix):].lower().split("__")
            cursor = out
            for part in parents:
                cursor = cursor.setdefault(part, {})
            cursor[leaf] = val
    return out


def _resolve(value: Any, key: str = "") -> Any:
    """Expand ${VAR} references, then coerce the known bool/int keys."""
    if isinstance(value, dict):
        return {k: _resolve(v, k) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve(v) for v in value]
    if isinstance(value, str):
        value = _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if key in _BOOL_KEYS and not isinstance(value, bool):
        return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}
    if key in _INT_KEYS:
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"{key} must be an integer, got {value!r}") from None
    return value


def _section(name: str, data: Any) -> Any:
    cls = _SECTIONS[name]
    if not isinstance(data, dict):
        raise ValueError(f"Configuration section '{name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(f'{name}.{k}' for k in unknown)}")
    return cls(**data)


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "APISIX_SYNC_",
    *,
    dotenv: bool = True,
) -> AppConfig:
    """
    Build an AppConfig from (in precedence order):
      1) CLI overrides
      2) Environment variables (prefix APISIX_SYNC_, nested via __),
         including those from a `.env` file (never overriding the real env)
      3) YAML file (first existing)
      4) Built-in defaults

    ${ENV_VAR} references are expanded, bool/int keys coerced, and
    `gateway.admin_url` is required.
    """
    if dotenv:
        env_path = find_dotenv(usecwd=True)
        if env_path:
            load_dotenv(env_path, override=False)

    merged = _DEFAULTS
    for layer in (_file_layer(files), _env_layer(env_prefix), cli_overrides):
        merged = _merge(merged, layer)
    merged = _resolve(merged)

    cfg = AppConfig(**{name: _section(name, merged[name]) for name in _SECTIONS})
    if not cfg.gateway.admin_url:
        raise ValueError("Missing required configuration: gateway.admin_url")
    return cfg
