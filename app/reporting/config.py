# ============================================================================
# SERVIX CMMS - Reporting Configuration
# ============================================================================
# Typed settings stored in the ReportingConfig table.  DEFAULT_CONFIG
# declares every known key with its default, value type and category; rows
# in the table override defaults.  A database without the table (fresh
# checkout, unit tests) runs on defaults alone.
# ============================================================================

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import AuditRepository, get_db

logger = logging.getLogger("reporting.config")

DEFAULT_TZ = "Africa/Accra"


@dataclass(frozen=True)
class ConfigEntry:
    default: Any
    value_type: str = "string"
    category: str = "general"


DEFAULT_CONFIG: Dict[str, ConfigEntry] = {
    "timezone": ConfigEntry(DEFAULT_TZ),

    # Output
    "output_dir": ConfigEntry("downloads", category="output"),
    "report_prefix": ConfigEntry("cmms-report", category="output"),
    "footer_text": ConfigEntry("Generated by Servix CMMS", category="output"),

    # Charts
    "charts_enabled": ConfigEntry(True, "bool", "charts"),
    "chart_width": ConfigEntry(900, "int", "charts"),
    "chart_height": ConfigEntry(420, "int", "charts"),
    "max_chart_ms": ConfigEntry(6000, "int", "charts"),
    "max_heatmap_ms": ConfigEntry(6000, "int", "charts"),
}

_TRUTHY = ("true", "1", "yes", "on")


def _to_bool(raw: str) -> bool:
    return raw.strip().lower() in _TRUTHY


def _to_int(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        logger.warning("Non-integer config value %r, using 0", raw)
        return 0


def _to_json(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Malformed JSON config value %r", raw)
        return {}


_READERS: Dict[str, Callable[[str], Any]] = {
    "bool": _to_bool,
    "int": _to_int,
    "json": _to_json,
}

_WRITERS: Dict[str, Callable[[Any], str]] = {
    "bool": lambda v: "true" if v else "false",
    "int": lambda v: str(int(v)),
    "json": json.dumps,
}


def _infer_type(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, (dict, list)):
        return "json"
    return "string"


class ReportingConfig:
    """
    Class-level cache over the ReportingConfig table.

    Values are stored as text with their declared type and cast on load;
    every change is written to the audit log.
    """

    _cache: Dict[str, Any] = {}
    _cache_loaded: bool = False

    @classmethod
    def decode(cls, raw: Optional[str], value_type: str) -> Any:
        if raw is None:
            return None
        reader = _READERS.get(value_type)
        return reader(raw) if reader else raw

    @classmethod
    def encode(cls, value: Any, value_type: str) -> str:
        if value is None:
            return ""
        writer = _WRITERS.get(value_type)
        return writer(value) if writer else str(value)

    @classmethod
    def _load_cache(cls):
        if cls._cache_loaded:
            return

        cache = {key: entry.default for key, entry in DEFAULT_CONFIG.items()}
        try:
            conn = get_db()
            try:
                rows = conn.execute("SELECT key, value, value_type FROM ReportingConfig").fetchall()
            finally:
                conn.close()
        except sqlite3.OperationalError as exc:
            logger.debug("ReportingConfig table unavailable, using defaults: %s", exc)
            rows = []

        for row in rows:
            cache[row["key"]] = cls.decode(row["value"], row["value_type"])

        cls._cache = cache
        cls._cache_loaded = True

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        cls._load_cache()
        return cls._cache.get(key, default)

    @classmethod
    def set(cls, key: str, value: Any, user: Optional[str] = None) -> bool:
        """Persist *value* under *key*.  Known keys keep their declared type."""
        cls._load_cache()

        entry = DEFAULT_CONFIG.get(key) or ConfigEntry(None, _infer_type(value))
        if entry.value_type == "int":
            value = int(value)
        elif entry.value_type == "bool" and isinstance(value, str):
            value = _to_bool(value)
        stored = cls.encode(value, entry.value_type)

        conn = get_db()
        try:
            conn.execute(
                """INSERT INTO ReportingConfig (key, value, value_type, category, updated_by)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                   value = excluded.value,
                   value_type = excluded.value_type,
                   category = excluded.category,
                   updated_at = CURRENT_TIMESTAMP,
                   updated_by = excluded.updated_by""",
                (key, stored, entry.value_type, entry.category, user),
            )
            conn.commit()
        finally:
            conn.close()

        previous = cls._cache.get(key)
        cls._cache[key] = value
        if previous != value:
            AuditRepository.log(
                action="config_changed",
                category="config",
                user_name=user,
                old_value=str(previous),
                new_value=str(value),
                details=f"Changed {key}",
            )
        return True

    @classmethod
    def get_all(cls, category: Optional[str] = None) -> Dict[str, Any]:
        cls._load_cache()
        if category is None:
            return dict(cls._cache)
        return {
            key: cls._cache.get(key, entry.default)
            for key, entry in DEFAULT_CONFIG.items()
            if entry.category == category
        }

    @classmethod
    def reset_cache(cls):
        cls._cache = {}
        cls._cache_loaded = False

    @classmethod
    def init_defaults(cls):
        """Write every default whose key has no row yet."""
        conn = get_db()
        try:
            conn.executemany(
                """INSERT OR IGNORE INTO ReportingConfig (key, value, value_type, category)
                   VALUES (?, ?, ?, ?)""",
                [
                    (key, cls.encode(entry.default, entry.value_type), entry.value_type, entry.category)
                    for key, entry in DEFAULT_CONFIG.items()
                ],
            )
            conn.commit()
        finally:
            conn.close()
        cls.reset_cache()


# Convenience functions
def get_config(key: str, default: Any = None) -> Any:
    return ReportingConfig.get(key, default)


def set_config(key: str, value: Any, user: Optional[str] = None) -> bool:
    return ReportingConfig.set(key, value, user=user)


def get_all_config() -> Dict[str, Any]:
    return ReportingConfig.get_all()


def get_output_dir() -> Path:
    """Report output directory, resolved to an absolute path."""
    return Path(get_config("output_dir", "downloads")).resolve()


# ============================================================================
# Timezone Helpers
# ============================================================================

def get_timezone() -> ZoneInfo:
    tz_name = get_config("timezone", DEFAULT_TZ)
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to %s", tz_name, DEFAULT_TZ)
        return ZoneInfo(DEFAULT_TZ)


def get_local_now() -> datetime:
    """Current time in the configured timezone."""
    return datetime.now(get_timezone())


def format_time_for_display(dt: Optional[datetime] = None) -> str:
    """Format *dt* (default: now) in the configured timezone."""
    if dt is None:
        dt = get_local_now()
    elif dt.tzinfo is None:
        dt = dt.replace(tzinfo=get_timezone())
    else:
        dt = dt.astimezone(get_timezone())
    return dt.strftime("%Y-%m-%d %H:%M:%S %Z")
