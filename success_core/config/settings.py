# =============================================================================
# success_core/config/settings.py
# Sync settings: defaults <- secrets.toml <- environment
# =============================================================================
"""
Settings loader.

Expected secrets.toml format (same file Streamlit reads):

    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

    [sync]
    poll_interval = 30
    stale_time = 15
    retry = 3
    session_ttl = 300
    cache_version = "client-success-app-v2"
    log_level = "DEBUG"

Environment variables win over the file: SUPABASE_URL, SUPABASE_KEY and
SUCCESS_CORE_<FIELD> for any field below (e.g. SUCCESS_CORE_POLL_INTERVAL).
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
import logging

import toml

from success_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SECRETS_PATH = Path(".streamlit") / "secrets.toml"
ENV_PREFIX = "SUCCESS_CORE_"

DEFAULT_PRECACHE_MANIFEST = [
    "/",
    "/index.html",
    "/favicon.ico",
    "/manifest.json",
    "/assets/index.css",
    "/assets/index.js",
]


@dataclass(frozen=True)
class SyncSettings:
    """All tunables of the sync core. Durations are in seconds."""

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""

    # Synced queries
    poll_interval: float = 30.0
    stale_time: float = 15.0
    retry: int = 3
    retry_delay_base: float = 1.0
    retry_delay_max: float = 30.0
    request_timeout: Optional[float] = None

    # Caches
    session_ttl: float = 300.0
    stabilizer_expiry: float = 5.0

    # Offline fetch cache
    base_url: str = "http://localhost:8080"
    cache_version: str = "client-success-app-v1"
    precache_manifest: List[str] = field(default_factory=lambda: list(DEFAULT_PRECACHE_MANIFEST))
    exclude_patterns: List[str] = field(default_factory=lambda: ["/api/", "supabase"])

    # Local storage
    db_path: Path = Path("local_data") / "success_core.db"

    # Logging
    log_level: str = "INFO"
    log_to_file: bool = True
    log_dir: Path = Path("logs")

    # Connectivity probing
    check_interval_online: float = 30.0
    check_interval_offline: float = 10.0

    @property
    def has_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level.upper())

    def validate(self) -> SyncSettings:
        """Raise ConfigurationError on values the sync layer cannot run with."""
        positive = ("poll_interval", "session_ttl", "stabilizer_expiry",
                    "check_interval_online", "check_interval_offline")
        for name in positive:
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive", config_key=name, expected_type="> 0")
        if self.stale_time < 0:
            raise ConfigurationError("stale_time must not be negative", config_key="stale_time")
        if self.retry < 0:
            raise ConfigurationError("retry must not be negative", config_key="retry")
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive", config_key="request_timeout")
        if not self.cache_version:
            raise ConfigurationError("cache_version must not be empty", config_key="cache_version")
        if not isinstance(self.log_level_number, int):
            raise ConfigurationError(f"Unknown log level: {self.log_level}", config_key="log_level")
        return self


def _coerce(name: str, raw: Any, default: Any) -> Any:
    """Convert a raw config value to the type of the field default."""
    try:
        if name == "request_timeout":
            return None if raw in (None, "", "none", "None") else float(raw)
        if isinstance(default, bool):
            return raw if isinstance(raw, bool) else str(raw).lower() in ("1", "true", "yes")
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
        if isinstance(default, Path):
            return Path(raw)
        if isinstance(default, list):
            if isinstance(raw, str):
                return [item.strip() for item in raw.split(",") if item.strip()]
            return list(raw)
        return str(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid value for {name}: {raw!r}",
            config_key=name,
            expected_type=type(default).__name__,
        ) from e


def _from_mapping(base: SyncSettings, values: Mapping[str, Any]) -> SyncSettings:
    defaults = {f.name: getattr(base, f.name) for f in fields(SyncSettings)}
    updates: Dict[str, Any] = {}
    for name, raw in values.items():
        if name not in defaults:
            logger.warning(f"Ignoring unknown sync setting: {name}")
            continue
        updates[name] = _coerce(name, raw, defaults[name])
    return replace(base, **updates)


def _load_toml(path: Path) -> Dict[str, Any]:
    try:
        secrets = toml.load(path)
    except toml.TomlDecodeError as e:
        raise ConfigurationError(f"Could not parse {path}: {e}", config_key=str(path)) from e

    values: Dict[str, Any] = dict(secrets.get("sync", {}))
    supabase = secrets.get("supabase", {})
    if "url" in supabase:
        values["supabase_url"] = supabase["url"]
    if "key" in supabase:
        values["supabase_key"] = supabase["key"]
    return values


def _load_env(environ: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    if environ.get("SUPABASE_URL"):
        values["supabase_url"] = environ["SUPABASE_URL"]
    if environ.get("SUPABASE_KEY"):
        values["supabase_key"] = environ["SUPABASE_KEY"]

    known = {f.name for f in fields(SyncSettings)}
    for env_key, raw in environ.items():
        if not env_key.startswith(ENV_PREFIX):
            continue
        name = env_key[len(ENV_PREFIX):].lower()
        if name in known:
            values[name] = raw
    return values


def load_settings(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> SyncSettings:
    """
    Build SyncSettings from defaults, a secrets.toml file and the environment.

    Args:
        path: TOML file to read (default: .streamlit/secrets.toml if present)
        environ: Environment mapping (default: os.environ)
        **overrides: Final explicit overrides (e.g. in tests)

    Returns:
        Validated SyncSettings
    """
    settings = SyncSettings()

    toml_path = Path(path) if path else DEFAULT_SECRETS_PATH
    if toml_path.exists():
        settings = _from_mapping(settings, _load_toml(toml_path))
        logger.debug(f"Loaded sync settings from {toml_path}")
    elif path is not None:
        raise ConfigurationError(f"Settings file not found: {toml_path}", config_key=str(toml_path))

    settings = _from_mapping(settings, _load_env(os.environ if environ is None else environ))

    if overrides:
        settings = _from_mapping(settings, overrides)

    return settings.validate()
