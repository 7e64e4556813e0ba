from __future__ import annotations

import os
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError


# ---------- Typed sections ----------

@dataclass
class AppSection:
    run_id: Optional[str] = None
    dry_run: bool = False


@dataclass
class JamfSection:
    base_url: str = ""
    client_id: str = ""
    client_secret: str = ""   # secret – never log in clear text
    verify_tls: bool = True
    timeout_sec: int = 30
    page_size: int = 100


@dataclass
class InventorySection:
    include_mobile_devices: bool = True


@dataclass
class SyncSection:
    write_attributes: bool = False
    create_definitions: bool = False
    delay_sec: float = 0.2


@dataclass
class ExportSection:
    enabled: bool = True
    directory: str = "reports"
    format: str = "csv"       # csv | xlsx


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"   # INFO..CRITICAL
    file_level: str = "DEBUG"     # DEBUG..CRITICAL


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    app: AppSection
    jamf: JamfSection
    inventory: InventorySection
    sync: SyncSection
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

DEFAULT_FILES: Tuple[str, ...] = (
    "./plansync.yml",
    os.path.expanduser("~/.config/plansync/config.yml"),
    "/etc/plansync/config.yml",
)

_DEFAULTS: Dict[str, Any] = {
    "app": {"run_id": None, "dry_run": False},
    "jamf": {
        "base_url": "",
        "client_id": "",
        "client_secret": "",
        "verify_tls": True,
        "timeout_sec": 30,
        "page_size": 100,
    },
    "inventory": {"include_mobile_devices": True},
    "sync": {"write_attributes": False, "create_definitions": False, "delay_sec": 0.2},
    "export": {"enabled": True, "directory": "reports", "format": "csv"},
    "logging": {"base_dir": "logs", "console_level": "INFO", "file_level": "DEBUG"},
}

# Conventional variable names used by most Jamf tooling.
_JAMF_ENV_ALIASES: Dict[str, str] = {
    "JAMF_URL": "base_url",
    "JAMF_CLIENT_ID": "client_id",
    "JAMF_CLIENT_SECRET": "client_secret",
}

_BOOL_KEYS = {"verify_tls", "dry_run", "include_mobile_devices", "write_attributes",
              "create_definitions", "enabled"}
_INT_KEYS = {"timeout_sec", "page_size"}
_FLOAT_KEYS = {"delay_sec"}

_PLACEHOLDER_PATTERNS = [
    re.compile(r"^<.*>$"),
    re.compile(r"^your[-_ ]", re.IGNORECASE),
    re.compile(r"^x{3,}$", re.IGNORECASE),
    re.compile(r"^(changeme|change_me|replace_me|todo|none|null)$", re.IGNORECASE),
    re.compile(r"yourserver\.jamfcloud\.com", re.IGNORECASE),
]


# ---------- Utilities ----------

def _deep_merge(base: Dict[str, Any], ext: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Deep-merge for dicts: maps merge recursively, lists/scalars override.
    `ext` wins over `base`. Returns a new dict.
    """
    if not ext:
        return dict(base)
    out: Dict[str, Any] = dict(base)
    for k, v in ext.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _read_yaml_file(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping: {path}")
    return data


def _load_first_existing(files: Tuple[str, ...]) -> Dict[str, Any]:
    for p in files:
        if os.path.exists(p):
            return _read_yaml_file(p)
    return {}


def _env_to_dict(prefix: str = "PSYNC_") -> Dict[str, Any]:
    """
    Convert PSYNC_FOO__BAR=val to {"foo": {"bar": "val"}} (lowercased keys).
    JAMF_URL / JAMF_CLIENT_ID / JAMF_CLIENT_SECRET map onto the jamf section.
    """
    out: Dict[str, Any] = {}
    for env_key, cfg_key in _JAMF_ENV_ALIASES.items():
        val = os.environ.get(env_key)
        if val:
            out.setdefault("jamf", {})[cfg_key] = val

    plen = len(prefix)
    for key, val in os.environ.items():
        if not key.startswith(prefix):
            continue
        path = key[plen:].lower().split("__")
        cursor = out
        for part in path[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path[-1]] = val
    return out


def _interpolate_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Replace values like "${VAR}" with os.environ["VAR"] when present.
    """
    def repl(v: Any) -> Any:
        if isinstance(v, str) and v.startswith("${") and v.endswith("}"):
            return os.environ.get(v[2:-1], "")
        return v

    def walk(obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: walk(repl(v)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(x) for x in obj]
        return repl(obj)

    return walk(cfg)


def _coerce_types(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Minimal type coercion for booleans and numbers in known keys.
    """
    def to_bool(x: Any) -> bool:
        return str(x).strip().lower() in {"1", "true", "yes", "y", "on"}

    def walk(obj: Any, key_path: Tuple[str, ...] = ()) -> Any:
        if isinstance(obj, dict):
            return {k: walk(v, key_path + (k,)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(v, key_path) for v in obj]
        last = key_path[-1] if key_path else ""
        if last in _BOOL_KEYS:
            return to_bool(obj)
        try:
            if last in _INT_KEYS:
                return int(obj)
            if last in _FLOAT_KEYS:
                return float(obj)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid numeric value for {'.'.join(key_path)}: {obj!r}")
        return obj

    return walk(cfg)


def is_placeholder(value: Any) -> bool:
    """True when *value* is empty or looks like a template placeholder."""
    if value is None:
        return True
    text = str(value).strip()
    if not text:
        return True
    return any(p.search(text) for p in _PLACEHOLDER_PATTERNS)


def _validate(cfg: Dict[str, Any]) -> None:
    """
    Fail fast on an absent or placeholder connection config.
    """
    jamf = cfg.get("jamf", {})
    bad = [f"jamf.{k}" for k in ("base_url", "client_id", "client_secret") if is_placeholder(jamf.get(k))]
    if bad:
        raise ConfigError(
            "Missing or placeholder connection configuration: " + ", ".join(bad)
            + ". Set them in plansync.yml, a .env file (JAMF_URL, JAMF_CLIENT_ID, "
            "JAMF_CLIENT_SECRET) or on the command line."
        )
    base_url = str(jamf.get("base_url"))
    if not base_url.lower().startswith(("http://", "https://")):
        raise ConfigError(f"jamf.base_url must be an http(s) URL: {base_url}")

    if int(jamf.get("page_size", 0)) <= 0:
        raise ConfigError("jamf.page_size must be a positive integer")

    fmt = str(cfg.get("export", {}).get("format", "csv")).lower()
    if fmt not in {"csv", "xlsx"}:
        raise ConfigError(f"export.format must be 'csv' or 'xlsx', got '{fmt}'")


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = DEFAULT_FILES,
    env_prefix: str = "PSYNC_",
    use_dotenv: bool = True,
) -> AppConfig:
    """
    Build an AppConfig from (in precedence order):
      1) CLI overrides
      2) Environment variables (.env loaded first; prefix PSYNC_, nested via __)
      3) YAML file (first existing)
      4) Built-in defaults

    Also performs:
      - ${ENV_VAR} interpolation
      - basic type coercion (bool/int/float)
      - validation of the connection configuration

    Raises:
        ConfigError: If the merged configuration is incomplete or invalid.
    """
    if use_dotenv:
        env_path = find_dotenv(usecwd=True) or ""
        if env_path:
            load_dotenv(env_path, override=False)

    # Load file first (low precedence)
    file_cfg = _load_first_existing(files)

    # Env overlay
    env_cfg = _env_to_dict(env_prefix)

    # Combine: defaults <- file <- env <- cli
    merged = _deep_merge(_DEFAULTS, file_cfg)
    merged = _deep_merge(merged, env_cfg)
    merged = _deep_merge(merged, _drop_empty(cli_overrides or {}))

    # Interpolate and coerce
    merged = _interpolate_env(merged)
    merged = _coerce_types(merged)

    _validate(merged)

    try:
        return AppConfig(
            app=AppSection(**merged.get("app", {})),
            jamf=JamfSection(**merged.get("jamf", {})),
            inventory=InventorySection(**merged.get("inventory", {})),
            sync=SyncSection(**merged.get("sync", {})),
            export=ExportSection(**merged.get("export", {})),
            logging=LoggingSection(**merged.get("logging", {})),
        )
    except TypeError as exc:
        raise ConfigError(f"Unknown configuration key: {exc}") from exc


def _drop_empty(overrides: Dict[str, Any]) -> Dict[str, Any]:
    """CLI flags left at None must not mask file/env values."""
    out: Dict[str, Any] = {}
    for k, v in overrides.items():
        if isinstance(v, dict):
            v = _drop_empty(v)
            if v:
                out[k] = v
        elif v is not None:
            out[k] = v
    return out
