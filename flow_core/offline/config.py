# =============================================================================
# flow_core/offline/config.py
# Storage Configuration (defaults → secrets.toml → environment)
# =============================================================================
"""
StorageConfig - runtime options for the storage core.

Sources, later ones win:
    1. Defaults below
    2. .streamlit/secrets.toml  ([storage] and [supabase] sections)
    3. FLOWTRACKER_* / SUPABASE_* environment variables

Expected secrets.toml format:
    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

    [storage]
    storage_mode = "auto"
    enable_fallback = true
    remote_retry_attempts = 3
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
import logging

import toml

from flow_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SECRETS_PATH = Path(".streamlit") / "secrets.toml"
DEFAULT_DB_PATH = Path("local_data") / "flowtracker.db"

STORAGE_MODES = ("auto", "remote", "local", "hybrid")

# Names used by the original web client's VITE_FLOWTRACKER_STORAGE_MODE
MODE_ALIASES = {
    "database": "remote",
    "db": "remote",
    "localstorage": "local",
    "offline": "local",
}

# Environment variable → field name
ENV_VARS = {
    "FLOWTRACKER_STORAGE_MODE": "storage_mode",
    "FLOWTRACKER_ENABLE_FALLBACK": "enable_fallback",
    "FLOWTRACKER_ENABLE_DATABASE": "enable_database",
    "FLOWTRACKER_FORCE_LOCAL_MODE": "force_local_mode",
    "FLOWTRACKER_DB_RETRY_ATTEMPTS": "remote_retry_attempts",
    "FLOWTRACKER_DB_TIMEOUT": "remote_connect_timeout_ms",
    "FLOWTRACKER_SYNC_INTERVAL": "sync_interval_ms",
    "FLOWTRACKER_OFFLINE_SYNC": "offline_sync_enabled",
    "FLOWTRACKER_FAILURE_THRESHOLD": "remote_failure_threshold",
    "FLOWTRACKER_PROBE_TTL": "probe_cache_ttl_seconds",
    "FLOWTRACKER_RETRY_BASE_DELAY": "retry_base_delay_seconds",
    "FLOWTRACKER_RETRY_MAX_DELAY": "retry_max_delay_seconds",
    "FLOWTRACKER_DEBUG_STORAGE": "debug_storage",
    "FLOWTRACKER_LOG_LEVEL": "log_level",
    "FLOWTRACKER_LOCAL_DB": "local_db_path",
    "FLOWTRACKER_NAMESPACE": "namespace",
    "FLOWTRACKER_OWNER_ID": "owner_id",
    "SUPABASE_URL": "supabase_url",
    "SUPABASE_KEY": "supabase_key",
}

# Options that may change while the process is running
HOT_RELOADABLE = (
    "enable_fallback",
    "remote_retry_attempts",
    "sync_interval_ms",
    "offline_sync_enabled",
    "remote_failure_threshold",
    "debug_storage",
    "log_level",
)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass
class StorageConfig:
    """All options recognised by the storage core."""

    # Storage
    storage_mode: str = "auto"
    enable_fallback: bool = True
    enable_database: bool = True
    force_local_mode: bool = False

    # Remote store
    remote_retry_attempts: int = 3
    remote_connect_timeout_ms: int = 5000
    remote_failure_threshold: int = 5
    probe_cache_ttl_seconds: float = 10.0
    retry_base_delay_seconds: float = 5.0
    retry_max_delay_seconds: float = 60.0

    # Sync
    sync_interval_ms: int = 30000
    offline_sync_enabled: bool = True

    # Diagnostics
    debug_storage: bool = False
    log_level: str = "warning"

    # Backends
    local_db_path: str = str(DEFAULT_DB_PATH)
    namespace: str = "flowtracker"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    owner_id: Optional[str] = None

    # Where the file-backed values came from, for reload()
    secrets_path: Optional[str] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.storage_mode = normalize_mode(self.storage_mode)

    # -------------------------------------------------------------------------
    # Derived values
    # -------------------------------------------------------------------------

    @property
    def has_remote_credentials(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @property
    def remote_timeout_seconds(self) -> float:
        return self.remote_connect_timeout_ms / 1000.0

    @property
    def sync_interval_seconds(self) -> float:
        return self.sync_interval_ms / 1000.0

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(self) -> List[str]:
        """Return a list of human-readable problems (empty when valid)."""
        errors = []

        if self.storage_mode not in STORAGE_MODES:
            errors.append(f"Invalid storage mode: {self.storage_mode}")

        if self.remote_connect_timeout_ms < 1000:
            errors.append("Database connect timeout must be at least 1000ms")

        if self.remote_retry_attempts < 0 or self.remote_retry_attempts > 10:
            errors.append("Database retry attempts must be between 0 and 10")

        if self.sync_interval_ms < 5000:
            errors.append("Sync interval must be at least 5000ms")

        if self.remote_failure_threshold < 1:
            errors.append("Remote failure threshold must be at least 1")

        if self.probe_cache_ttl_seconds < 0:
            errors.append("Probe cache TTL cannot be negative")

        if self.retry_base_delay_seconds < 0 or self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            errors.append("Retry delays must satisfy 0 <= base <= max")

        if self.storage_mode == "remote" and not self.has_remote_credentials:
            errors.append("Storage mode 'remote' requires SUPABASE_URL and SUPABASE_KEY")

        return errors

    def ensure_valid(self) -> StorageConfig:
        errors = self.validate()
        if errors:
            raise ConfigurationError(
                "Invalid storage configuration",
                errors=errors,
            )
        return self

    # -------------------------------------------------------------------------
    # Hot reload
    # -------------------------------------------------------------------------

    def reload(self, environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        """
        Re-read the hot-reloadable subset from the same sources.

        Returns:
            Dict of option -> new value for every option that changed
        """
        fresh = load_config(
            secrets_path=self.secrets_path,
            environ=environ,
            strict=False,
        )
        candidate = StorageConfig(**{
            **asdict(self),
            **{name: getattr(fresh, name) for name in HOT_RELOADABLE},
        })
        errors = candidate.validate()
        if errors:
            logger.warning(f"Ignoring configuration reload, invalid values: {errors}")
            return {}

        changed = {}
        for name in HOT_RELOADABLE:
            new_value = getattr(fresh, name)
            if getattr(self, name) != new_value:
                setattr(self, name, new_value)
                changed[name] = new_value

        if changed:
            logger.info(f"Configuration reloaded: {changed}")
        return changed

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("secrets_path", None)
        if redact and data.get("supabase_key"):
            data["supabase_key"] = "***"
        return data


# =============================================================================
# LOADING
# =============================================================================

def normalize_mode(value: Any) -> str:
    text = str(value or "auto").strip()
    lowered = text.lower()
    return MODE_ALIASES.get(lowered, lowered)


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw (usually string) value to the declared field type."""
    default = getattr(StorageConfig, name, None)
    kind = {f.name: f.type for f in fields(StorageConfig)}[name]

    if value is None:
        return None
    if isinstance(default, bool) or kind == "bool":
        if isinstance(value, bool):
            return value
        lowered = str(value).strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ConfigurationError(
            f"Invalid boolean for {name}: {value!r}",
            config_key=name,
            expected_type="bool",
        )
    if kind == "int":
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Invalid integer for {name}: {value!r}",
                config_key=name,
                expected_type="int",
            ) from None
    if kind == "float":
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Invalid number for {name}: {value!r}",
                config_key=name,
                expected_type="float",
            ) from None
    return str(value)


def _read_secrets(path: Path) -> Dict[str, Any]:
    """Read [storage] and [supabase] from a secrets.toml file."""
    if not path.exists():
        return {}

    try:
        secrets = toml.load(path)
    except (toml.TomlDecodeError, OSError) as e:
        logger.warning(f"Could not read {path}: {e}")
        return {}

    values: Dict[str, Any] = {}
    valid = {f.name for f in fields(StorageConfig)}

    for key, value in (secrets.get("storage") or {}).items():
        if key in valid:
            values[key] = value
        else:
            logger.debug(f"Ignoring unknown storage option in secrets: {key}")

    supabase = secrets.get("supabase") or {}
    if supabase.get("url"):
        values["supabase_url"] = supabase["url"]
    if supabase.get("key"):
        values["supabase_key"] = supabase["key"]

    return values


def load_config(
    secrets_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    strict: bool = True,
    **overrides: Any,
) -> StorageConfig:
    """
    Build a StorageConfig from defaults, secrets.toml and the environment.

    Args:
        secrets_path: Path to secrets.toml (default: .streamlit/secrets.toml)
        environ: Environment mapping (default: os.environ)
        strict: Raise ConfigurationError when the result is invalid
        **overrides: Explicit values that win over every other source

    Returns:
        StorageConfig
    """
    environ = os.environ if environ is None else environ
    path = Path(secrets_path) if secrets_path else DEFAULT_SECRETS_PATH

    raw: Dict[str, Any] = {}
    raw.update(_read_secrets(path))

    for env_name, field_name in ENV_VARS.items():
        value = environ.get(env_name)
        if value is not None and value != "":
            raw[field_name] = value

    raw.update({k: v for k, v in overrides.items() if v is not None})

    values = {name: _coerce(name, value) for name, value in raw.items()}
    config = StorageConfig(secrets_path=str(path), **values)

    errors = config.validate()
    if errors:
        if strict:
            raise ConfigurationError("Invalid storage configuration", errors=errors)
        logger.warning(f"Storage configuration has problems: {errors}")

    return config


def get_config_status(config: StorageConfig) -> Dict[str, Any]:
    """Configuration summary for the diagnostics panel."""
    errors = config.validate()
    return {
        "valid": not errors,
        "errors": errors,
        "config": {
            "storage_mode": config.storage_mode,
            "enable_database": config.enable_database,
            "enable_fallback": config.enable_fallback,
            "offline_sync_enabled": config.offline_sync_enabled,
            "debug_storage": config.debug_storage,
            "has_remote_credentials": config.has_remote_credentials,
        },
    }
