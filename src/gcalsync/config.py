"""Configuration loader for gcalsync.

This module provides:
- Typed config models (pydantic BaseModel)
- Precedence-aware loader: file (YAML) < ENV (GCALSYNC__*) < CLI overrides
- Minimal coercion for ENV values (bool/int/float/list); values bound for
  text fields are passed through verbatim

ENV format (nested via delimiter):
  GCALSYNC__caldav__base_url=https://cloud.example.com
  GCALSYNC__caldav__username=nc_user
  GCALSYNC__caldav__calendar_home=/remote.php/dav/calendars/nc_user/
  GCALSYNC__sync__correlation_window_days=730

The CalDAV password is best passed as GCALSYNC_CALDAV_PASSWORD.

Example:
  cfg = load_config("~/.config/gcalsync/config.yaml", cli_overrides={"sync": {"dry_run": True}})
  print(cfg.caldav.base_url)
"""

from __future__ import annotations

import os
import re
import types
from collections.abc import Mapping, MutableMapping
from pathlib import Path
from typing import Any, Union, get_args, get_origin

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

DEFAULT_CONFIG_PATH = "~/.config/gcalsync/config.yaml"


# ----------------------------
# Pydantic models (typed config)
# ----------------------------


class GoogleConfig(BaseModel):
    credentials_file: str | None = None  # or GOOGLE_CREDENTIALS_JSON via ENV
    token_store: str = "~/.config/gcalsync/google_token.json"


class CalDAVConfig(BaseModel):
    base_url: str
    username: str
    app_password: str | None = None  # recommended to use ENV
    calendar_home: str
    verify_tls: bool = True

    @field_validator("base_url")
    @classmethod
    def _validate_base_url(cls, v: str) -> str:
        if not (v.startswith("http://") or v.startswith("https://")):
            raise ValueError("caldav.base_url must start with http:// or https://")
        return v

    @field_validator("calendar_home")
    @classmethod
    def _validate_calendar_home(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("caldav.calendar_home must start with '/'")
        return v if v.endswith("/") else v + "/"


class SyncConfig(BaseModel):
    calendar_prefix: str = "GCal: "
    # Full-fetch horizon when no cursor is stored (days back from now; forward is open)
    time_window_days: int = Field(365, ge=1, le=1825)
    # Correlation lookup window, applied both back and forward from now
    correlation_window_days: int = Field(365, ge=1, le=3650)
    page_size: int = Field(250, ge=1, le=2500)
    default_reminder_minutes: int = Field(10, ge=0, le=40320)
    default_tz: str = "UTC"
    dry_run: bool = False
    # Transport retries for CalDAV requests; 0 means each request is tried once
    max_retries: int = Field(0, ge=0, le=10)
    backoff_initial_sec: float = Field(1.0, gt=0, le=60)


class StateConfig(BaseModel):
    db_path: str = "~/.local/state/gcalsync/state.sqlite"


class LoggingConfig(BaseModel):
    # Allow using alias "json" in config/env while avoiding BaseModel.json clash
    model_config = ConfigDict(populate_by_name=True)
    level: str = "INFO"
    as_json: bool = Field(False, alias="json")

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, v: str) -> str:
        lv = (v or "INFO").upper()
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if lv not in allowed:
            raise ValueError(f"logging.level must be one of {sorted(allowed)}")
        return lv


class RuntimeConfig(BaseModel):
    lock_path: str = "/tmp/gcalsync.lock"


class AppConfig(BaseModel):
    google: GoogleConfig = Field(default_factory=GoogleConfig)
    caldav: CalDAVConfig | None = None
    sync: SyncConfig = Field(default_factory=SyncConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "AppConfig",
    "CalDAVConfig",
    "GoogleConfig",
    "LoggingConfig",
    "RuntimeConfig",
    "StateConfig",
    "SyncConfig",
    "load_config",
    "merge_dicts",
    "read_env_config",
]


# ----------------------------
# Utilities
# ----------------------------


_BOOL_TRUE = {"1", "true", "yes", "on", "y", "t"}
_BOOL_FALSE = {"0", "false", "no", "off", "n", "f"}

_LIST_SPLIT_RE = re.compile(r"\s*,\s*")


def _coerce_value(val: str) -> Any:
    """Best-effort coercion for ENV values."""
    s = val.strip()

    ls = s.lower()
    if ls in _BOOL_TRUE:
        return True
    if ls in _BOOL_FALSE:
        return False

    if re.fullmatch(r"[+-]?\d+", s):
        return int(s)
    if re.fullmatch(r"[+-]?\d+\.\d*", s):
        return float(s)

    # lists (comma-separated)
    if "," in s:
        return [p for p in _LIST_SPLIT_RE.split(s) if p != ""]

    return s


def _member_types(annotation: Any) -> tuple[Any, ...]:
    if get_origin(annotation) in (Union, types.UnionType):
        return get_args(annotation)
    return (annotation,)


def _is_text_field(path: list[str], model: type[BaseModel] | None = None) -> bool:
    """True if `path` names a `str` (or optional `str`) field of AppConfig."""
    model = model or AppConfig
    head, *rest = path
    info = next(
        (f for name, f in model.model_fields.items() if head in (name, f.alias)),
        None,
    )
    if info is None:
        return False
    members = _member_types(info.annotation)
    if not rest:
        return str in members
    for member in members:
        if isinstance(member, type) and issubclass(member, BaseModel):
            return _is_text_field(rest, member)
    return False


def merge_dicts(
    base: MutableMapping[str, Any], override: Mapping[str, Any]
) -> MutableMapping[str, Any]:
    """Deep-merge override into base (mutates base). Lists/atoms are replaced."""
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, Mapping):
            merge_dicts(base[k], v)
        else:
            base[k] = v
    return base


def _allowed_config_prefixes() -> list[Path]:
    return [
        Path.home(),
        Path("/data"),  # container data volume
        Path("/opt/gcalsync"),
        Path("/etc/gcalsync"),
        Path.cwd(),
        Path("/tmp"),
        Path("/var/tmp"),
    ]


def read_yaml_config(path: Path | None) -> dict[str, Any]:
    if not path:
        return {}
    p = path.expanduser().resolve()

    # Only read config from known locations (no traversal into system files)
    allowed = _allowed_config_prefixes()
    if not any(p.is_relative_to(prefix.resolve()) for prefix in allowed):
        raise ValueError(
            f"Configuration file path '{p}' is outside allowed directories. "
            f"Allowed prefixes: {[str(prefix) for prefix in allowed]}"
        )

    if not p.exists():
        return {}
    with p.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Top-level YAML must be a mapping in {p}")
        return data


def read_env_config(prefix: str = "GCALSYNC__", nested_delim: str = "__") -> dict[str, Any]:
    """Build nested dict from environment variables.

    Keys must start with `prefix` (default 'GCALSYNC__'); nested keys split by
    `nested_delim`, e.g. GCALSYNC__sync__page_size=100.
    Values for text fields (e.g. caldav.app_password) are kept as-is.
    """
    if not prefix.endswith(nested_delim):
        raise ValueError("prefix must end with the nested_delim (default 'GCALSYNC__' and '__').")

    result: dict[str, Any] = {}
    plen = len(prefix)
    for key, raw in os.environ.items():
        if not key.startswith(prefix):
            continue
        path_parts = key[plen:].split(nested_delim)
        cursor = result
        for part in path_parts[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path_parts[-1]] = raw if _is_text_field(path_parts) else _coerce_value(raw)
    return result


# ----------------------------
# Loader (precedence: file < env < cli_overrides)
# ----------------------------


def load_config(
    file_path: str | Path | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
    env_prefix: str = "GCALSYNC__",
    env_nested_delim: str = "__",
) -> AppConfig:
    """Load AppConfig with precedence: file < env < CLI overrides.

    Args:
        file_path: YAML path or None
        cli_overrides: nested mapping of overrides (e.g., from CLI args)
        env_prefix: environment variable prefix (must end with env_nested_delim)
        env_nested_delim: nested delimiter for env vars

    Returns:
        AppConfig instance (validated)
    """
    merged: dict[str, Any] = {}

    merge_dicts(merged, read_yaml_config(Path(file_path) if file_path else None))
    merge_dicts(merged, read_env_config(prefix=env_prefix, nested_delim=env_nested_delim))

    if cli_overrides:
        if not isinstance(cli_overrides, Mapping):
            raise TypeError("cli_overrides must be a mapping (nested dict-like).")
        merge_dicts(merged, cli_overrides)

    try:
        return AppConfig.model_validate(merged)
    except ValidationError as ve:
        raise ValueError(f"Invalid configuration: {ve}") from ve
