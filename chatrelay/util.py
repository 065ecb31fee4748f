from __future__ import annotations

import os
from urllib.parse import quote

from .constants import (
    CLIENT_ID_MAX_CHARS,
    DEFAULT_ROOM,
    LOG_PREVIEW_CHARS,
    ROOM_ID_MAX_CHARS,
)


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def _normalize_identifier(value, max_chars: int) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if len(s) > int(max_chars):
        return None

    # Identifiers travel in URL paths and log lines.
    if "/" in s or "\n" in s or "\r" in s or "\x00" in s:
        return None

    return s


def normalize_client_id(value) -> str | None:
    return _normalize_identifier(value, CLIENT_ID_MAX_CHARS)


def normalize_room_id(value) -> str | None:
    return _normalize_identifier(value, ROOM_ID_MAX_CHARS)


def chat_path(client_id: str, room_id: str = DEFAULT_ROOM) -> str:
    """Connection path for ``client_id``; the default room uses the short form."""
    if room_id == DEFAULT_ROOM:
        return f"/chat/{quote(client_id, safe='')}"
    return f"/chat/{quote(room_id, safe='')}/{quote(client_id, safe='')}"


def chat_url(
    host: str, port: int, client_id: str, room_id: str = DEFAULT_ROOM, *, scheme: str = "ws"
) -> str:
    return f"{scheme}://{host}:{int(port)}{chat_path(client_id, room_id)}"


def preview(text: str, limit: int = LOG_PREVIEW_CHARS) -> str:
    if len(text) > limit:
        return text[:limit] + "...[truncated]"
    return text
