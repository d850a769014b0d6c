"""Client-wide settings, persisted to ``data/notify_settings.json``.

Provides a thin get/set layer over a JSON file.  A handful of settings can
also be overridden from the environment so a deployment can point the
client at another backend without editing the file.

Usage::

    from fitzone_notify.config import get_setting, set_setting, get_api_base_url

    base = get_api_base_url()                    # env > file > default
    set_setting("poll_interval_seconds", 120)    # persists immediately
    get_setting("user_id", fallback=None)        # with explicit fallback
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

_DEFAULT_SETTINGS_PATH = Path(__file__).resolve().parents[1] / "data" / "notify_settings.json"

DEFAULT_API_BASE_URL = "http://localhost:8080/api"
DEFAULT_POLL_INTERVAL = 300  # 5 minutes
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_LOG_LEVEL = "INFO"


def _settings_path() -> Path:
    override = (os.getenv("FITZONE_SETTINGS_PATH") or "").strip()
    return Path(override) if override else _DEFAULT_SETTINGS_PATH


def _load() -> dict:
    """Load the settings file, returning {} on any error."""
    path = _settings_path()
    try:
        if path.exists():
            data = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                return data
            logger.warning("Settings file %s is not a JSON object, ignoring", path)
    except (OSError, ValueError) as exc:
        logger.warning("Could not read settings file %s: %s", path, exc)
    return {}


def _save(data: dict) -> None:
    """Write settings to disk."""
    path = _settings_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(data, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def get_setting(key: str, fallback: Any = None) -> Any:
    """Read a single setting.  Returns *fallback* if not set."""
    return _load().get(key, fallback)


def set_setting(key: str, value: Any) -> None:
    """Write a single setting (persists immediately)."""
    data = _load()
    data[key] = value
    _save(data)


def get_all_settings() -> dict:
    """Return a copy of all saved settings."""
    return _load()


# ── Convenience helpers for common settings ──


def get_api_base_url() -> str:
    """Backend root, without a trailing slash."""
    url = (os.getenv("FITZONE_API_URL") or "").strip()
    if not url:
        url = str(get_setting("api_base_url") or DEFAULT_API_BASE_URL)
    return url.rstrip("/")


def get_access_token() -> Optional[str]:
    token = (os.getenv("FITZONE_ACCESS_TOKEN") or "").strip()
    if token:
        return token
    return get_setting("access_token") or None


def get_user_id() -> Optional[int]:
    """Signed-in member id, or None when nobody is signed in."""
    val = get_setting("user_id")
    if val is None:
        return None
    try:
        return int(val)
    except (ValueError, TypeError):
        logger.warning("Ignoring non-numeric user_id setting: %r", val)
        return None


def get_poll_interval_seconds() -> float:
    """Reminder / refresh cadence.  Falls back to 5 minutes."""
    val = get_setting("poll_interval_seconds")
    if val is not None:
        try:
            return max(1.0, float(val))
        except (ValueError, TypeError):
            pass
    return float(DEFAULT_POLL_INTERVAL)


def get_request_timeout() -> float:
    val = get_setting("request_timeout_seconds")
    if val is not None:
        try:
            return max(0.1, float(val))
        except (ValueError, TypeError):
            pass
    return DEFAULT_REQUEST_TIMEOUT


def get_storage_path() -> Path:
    """Where the client-side notification state is kept."""
    val = get_setting("storage_path")
    if val:
        return Path(val)
    return _settings_path().parent / "notify_state.json"


def get_time_zone() -> Optional[str]:
    """IANA zone name used to read reservation start times, or None for local."""
    val = get_setting("time_zone")
    return str(val) if val else None


def get_log_level() -> str:
    return str(get_setting("log_level", DEFAULT_LOG_LEVEL)).upper()
