from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, replace

from .constants import (
    DEFAULT_ROOM,
    INITIAL_BACKOFF_MS,
    MAX_BACKOFF_MS,
    MAX_RECONNECT_ATTEMPTS,
    ONLINE_USERS_POLL_MS,
    RECONNECT_SETTLE_MS,
    TYPING_DEBOUNCE_MS,
    TYPING_EXPIRE_MS,
)


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = 8080
    default_room: str = DEFAULT_ROOM
    welcome_template: str = "Welcome {client_id}!"
    heartbeat_s: float = 15.0
    max_frame_bytes: int = 4 * 1024 * 1024  # voice notes travel inline as base64
    log_level: str = "INFO"
    log_aiohttp_level: str = "WARNING"
    log_access_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    log_datefmt: str | None = None


@dataclass(frozen=True)
class ClientConfig:
    host: str = "127.0.0.1"
    port: int = 8080
    client_id: str = "python-1"
    room_id: str = DEFAULT_ROOM
    heartbeat_s: float = 15.0
    initial_backoff_ms: int = INITIAL_BACKOFF_MS
    max_backoff_ms: int = MAX_BACKOFF_MS
    max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS
    reconnect_settle_ms: int = RECONNECT_SETTLE_MS
    typing_debounce_ms: int = TYPING_DEBOUNCE_MS
    typing_expire_ms: int = TYPING_EXPIRE_MS
    online_users_poll_ms: int = ONLINE_USERS_POLL_MS
    http_timeout_s: float = 5.0


_LOGGING_KEYS = {
    "level": "log_level",
    "aiohttp_level": "log_aiohttp_level",
    "access_level": "log_access_level",
    "console": "log_console",
    "file": "log_file",
    "format": "log_format",
    "datefmt": "log_datefmt",
}

_OPTIONAL_STR_KEYS = ("log_file", "log_datefmt")


def load_toml(path: str) -> dict:
    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: RelayRuntimeConfig, data: dict) -> RelayRuntimeConfig:
    """Overlay a parsed TOML document onto ``base``.

    Keys may live at the top level or in a ``[relay]`` table; the
    ``[logging]`` table uses short names (``level``, ``file``...).
    Unknown keys are ignored.
    """

    relay = data.get("relay") if isinstance(data, dict) else None
    if isinstance(relay, dict):
        data = {**data, **relay}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped = {
            field: log_table[key] for key, field in _LOGGING_KEYS.items() if key in log_table
        }
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    for key in _OPTIONAL_STR_KEYS:
        if key in updates and updates[key] == "":
            updates[key] = None
    if "port" in updates:
        updates["port"] = int(updates["port"])
    if "heartbeat_s" in updates:
        updates["heartbeat_s"] = float(updates["heartbeat_s"])
    if "max_frame_bytes" in updates:
        updates["max_frame_bytes"] = int(updates["max_frame_bytes"])

    return replace(base, **updates) if updates else base
