# ============================================================================
# DISPATCH-CORE — Configuration Management
# ============================================================================
# Typed defaults, overridable from DISPATCH_<KEY> environment variables and
# at runtime (tests, admin tooling).
# ============================================================================

import json
import logging
import os
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

ENV_PREFIX = "DISPATCH_"

# key: (default, value_type, category)
DEFAULT_CONFIG = {
    # Store
    "db_path": ("dispatch.db", "string", "store"),
    "db_timeout_seconds": (30, "int", "store"),

    # Application
    "session_secret": ("dispatch-core-session-key", "string", "app"),
    "log_level": ("INFO", "string", "app"),
    "test_mode": (False, "bool", "app"),

    # Availability reconciliation job
    "reconcile_enabled": (True, "bool", "scheduler"),
    "reconcile_interval_seconds": (60, "int", "scheduler"),

    # Occurrence codes
    "occurrence_code_width": (5, "int", "occurrences"),

    # Alerts
    "alert_duration_critical_ms": (10000, "int", "alerts"),
    "alert_duration_default_ms": (5000, "int", "alerts"),
    "default_sound_volume": (0.5, "float", "alerts"),
    "seen_event_cache_size": (1000, "int", "alerts"),
}


class Settings:
    """
    Process-wide configuration.

    Values resolve in order: runtime override, environment variable
    (DISPATCH_DB_PATH, DISPATCH_TEST_MODE, ...), built-in default.
    """

    _cache: Dict[str, Any] = {}
    _cache_loaded: bool = False
    _overrides: Dict[str, Any] = {}

    @classmethod
    def _load_cache(cls):
        if cls._cache_loaded:
            return

        for key, (default, vtype, category) in DEFAULT_CONFIG.items():
            raw = os.environ.get(ENV_PREFIX + key.upper())
            if raw is None:
                cls._cache[key] = default
            else:
                cls._cache[key] = cls._cast_value(raw, vtype, default)

        cls._cache_loaded = True

    @classmethod
    def _cast_value(cls, value: str, value_type: str, default: Any = None) -> Any:
        """Cast a string value (env var) to the declared type."""
        if value is None:
            return default
        if value_type == "bool":
            return value.strip().lower() in ("true", "1", "yes", "on")
        if value_type == "int":
            try:
                return int(value)
            except ValueError:
                logger.warning(f"[Config] Invalid int '{value}', using default {default}")
                return default
        if value_type == "float":
            try:
                return float(value)
            except ValueError:
                logger.warning(f"[Config] Invalid float '{value}', using default {default}")
                return default
        if value_type == "json":
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return default
        return value

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        if key in cls._overrides:
            return cls._overrides[key]
        cls._load_cache()
        return cls._cache.get(key, default)

    @classmethod
    def set(cls, key: str, value: Any):
        """Override a value for the lifetime of the process (or until reset)."""
        cls._overrides[key] = value

    @classmethod
    def reset(cls, key: Optional[str] = None):
        """Drop runtime overrides and re-read the environment."""
        if key is None:
            cls._overrides.clear()
        else:
            cls._overrides.pop(key, None)
        cls._cache.clear()
        cls._cache_loaded = False

    @classmethod
    def get_all(cls, category: Optional[str] = None) -> Dict[str, Any]:
        result = {}
        for key, (_, _, cat) in DEFAULT_CONFIG.items():
            if category and cat != category:
                continue
            if key == "session_secret":
                continue
            result[key] = cls.get(key)
        return result
