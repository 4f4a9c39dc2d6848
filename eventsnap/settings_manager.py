"""
Application settings: persisted user preferences merged with environment
overrides.

Settings are persisted to ~/.eventsnap/settings.json (or
$EVENTSNAP_SETTINGS_DIR) so the transport choice survives across runs.
The API key is only ever read from the environment.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional, TypedDict

from eventsnap.errors import ConfigurationError
from eventsnap.logging_helper import Log

TransportMode = Literal["direct", "relay", "stub"]
TRANSPORT_MODES = ("direct", "relay", "stub")


class SettingsSchema(TypedDict, total=False):
    transport: TransportMode
    model: str
    relay_url: str
    request_timeout: Optional[float]
    calendar_host: str


DEFAULT_SETTINGS: SettingsSchema = {
    "transport": "direct",
    "model": "gemini-2.5-flash",
    "relay_url": "http://localhost:3000/api/extract",
    "request_timeout": None,
    "calendar_host": "calendar.google.com",
}

_ENV_OVERRIDES = {
    "transport": "EVENTSNAP_TRANSPORT",
    "model": "EVENTSNAP_MODEL",
    "relay_url": "EVENTSNAP_RELAY_URL",
    "request_timeout": "EVENTSNAP_REQUEST_TIMEOUT",
    "calendar_host": "EVENTSNAP_CALENDAR_HOST",
}


@dataclass(frozen=True)
class AppConfig:
    transport: str
    model: str
    relay_url: str
    request_timeout: Optional[float]
    calendar_host: str
    api_key: Optional[str] = None


def settings_dir() -> Path:
    configured = os.getenv("EVENTSNAP_SETTINGS_DIR")
    if configured:
        return Path(configured)
    return Path.home() / ".eventsnap"


def settings_file() -> Path:
    return settings_dir() / "settings.json"


def _ensure_settings_dir() -> None:
    try:
        settings_dir().mkdir(parents=True, exist_ok=True)
    except OSError as err:
        Log.warn(f"Unable to create settings directory {settings_dir()}: {err}")


def load_settings() -> SettingsSchema:
    """
    Load settings from disk, falling back to defaults if anything fails.
    """
    path = settings_file()
    if not path.exists():
        Log.info(f"Settings file not found, using defaults: {path}")
        return DEFAULT_SETTINGS.copy()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("Settings data is not a JSON object")
    except (OSError, ValueError) as err:
        Log.warn(f"Failed to read settings file ({path}): {err}")
        return DEFAULT_SETTINGS.copy()

    merged: SettingsSchema = DEFAULT_SETTINGS.copy()
    # Merge only known keys
    for key in DEFAULT_SETTINGS:
        if key in data:
            merged[key] = data[key]  # type: ignore[literal-required]
    return merged


def save_settings(settings: SettingsSchema) -> None:
    """
    Persist settings to disk.
    """
    _ensure_settings_dir()
    path = settings_file()
    try:
        path.write_text(
            json.dumps(settings, indent=2, sort_keys=True),
            encoding="utf-8",
        )
    except OSError as err:
        Log.warn(f"Failed to write settings file ({path}): {err}")


def set_transport(value: str) -> None:
    if value not in TRANSPORT_MODES:
        raise ValueError(f"Invalid transport: {value}")
    settings = load_settings()
    settings["transport"] = value  # type: ignore[typeddict-item]
    save_settings(settings)
    Log.info(f"Saved transport setting: {value}")


def _parse_timeout(value) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid request timeout: {value!r}")
    return timeout if timeout > 0 else None


def get_app_config() -> AppConfig:
    """
    Resolve the effective configuration: defaults, then the settings file,
    then environment variables. USE_STUB forces the offline stub transport.

    Raises:
        ConfigurationError: unknown transport or malformed timeout
    """
    settings = load_settings()
    for key, env_name in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            settings[key] = value  # type: ignore[literal-required]

    if os.getenv("USE_STUB"):
        Log.info("USE_STUB flag set - using stub transport")
        settings["transport"] = "stub"

    transport = str(settings.get("transport", DEFAULT_SETTINGS["transport"])).lower()
    if transport not in TRANSPORT_MODES:
        raise ConfigurationError(f"Unknown transport '{transport}', expected one of {', '.join(TRANSPORT_MODES)}")

    config = AppConfig(
        transport=transport,
        model=settings.get("model") or DEFAULT_SETTINGS["model"],
        relay_url=settings.get("relay_url") or DEFAULT_SETTINGS["relay_url"],
        request_timeout=_parse_timeout(settings.get("request_timeout")),
        calendar_host=settings.get("calendar_host") or DEFAULT_SETTINGS["calendar_host"],
        api_key=os.getenv("EVENTSNAP_API_KEY") or os.getenv("API_KEY"),
    )
    Log.kv({
        "stage": "config",
        "transport": config.transport,
        "model": config.model,
        "relay_url": config.relay_url,
        "api_key_present": bool(config.api_key),
    })
    return config
