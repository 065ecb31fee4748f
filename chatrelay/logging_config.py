"""Process-wide logging setup for chatrelayd."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import RelayRuntimeConfig

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# aiohttp's per-request access log is far noisier than its server/websocket
# loggers, so it gets its own level.
ACCESS_LOGGER = "aiohttp.access"
AIOHTTP_LOGGERS = ("aiohttp.server", "aiohttp.web", "aiohttp.websocket", "aiohttp.client")

# Marks handlers installed here so a later call can close them.
_OWNED = "_chatrelay_owned"


def _parse_level(value: Any, default: int) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    text = str(value or "").strip().upper()
    if not text:
        return default
    if text.isdigit():
        return int(text)
    level = logging.getLevelName(text)
    return level if isinstance(level, int) else default


def _optional(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value)
    return s if s.strip() else None


def _file_handler(path: str) -> logging.Handler:
    p = Path(os.path.expanduser(path))
    p.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(p, encoding="utf-8")
    try:
        os.chmod(p, 0o600)
    except OSError:
        pass
    return handler


def _build_handlers(cfg: RelayRuntimeConfig, log_file: str | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())
    if log_file:
        handlers.append(_file_handler(log_file))

    fmt = _optional(cfg.log_format) or DEFAULT_FORMAT
    formatter = logging.Formatter(fmt=fmt.strip(), datefmt=_optional(cfg.log_datefmt))
    for h in handlers:
        h.setFormatter(formatter)
        setattr(h, _OWNED, True)
    return handlers


def configure_logging(
    cfg: RelayRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Install root handlers for the relay and set library logger levels.

    ``override_file`` wins over ``cfg.log_file``; an empty string there
    disables file logging. Calling again replaces the root handlers and
    closes any previously installed by this function.
    """
    level = _parse_level(override_level or cfg.log_level, logging.INFO)
    aiohttp_level = _parse_level(cfg.log_aiohttp_level, logging.WARNING)
    access_level = _parse_level(cfg.log_access_level, logging.WARNING)

    log_file = _optional(override_file) if override_file is not None else _optional(cfg.log_file)
    handlers = _build_handlers(cfg, log_file)

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
        if getattr(h, _OWNED, False):
            h.close()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)

    logging.getLogger("aiohttp").setLevel(aiohttp_level)
    for name in AIOHTTP_LOGGERS:
        logging.getLogger(name).setLevel(aiohttp_level)
    logging.getLogger(ACCESS_LOGGER).setLevel(access_level)

    logging.captureWarnings(True)
    logging.getLogger("chatrelay").debug(
        "Logging configured level=%s aiohttp=%s access=%s file=%s",
        logging.getLevelName(level),
        logging.getLevelName(aiohttp_level),
        logging.getLevelName(access_level),
        log_file or "-",
    )
