"""Client connection state variants.

Exactly one of these holds at any instant. Consumers dispatch with
``isinstance`` and must handle every variant; :func:`describe_state` is the
reference for an exhaustive dispatch.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .errors import ErrorKind


@dataclass(frozen=True)
class Disconnected:
    pass


@dataclass(frozen=True)
class Connecting:
    pass


@dataclass(frozen=True)
class Connected:
    pass


@dataclass(frozen=True)
class Reconnecting:
    attempt: int
    max_attempts: int


@dataclass(frozen=True)
class Error:
    kind: ErrorKind
    detail: str | None = None


ConnectionState = Union[Disconnected, Connecting, Connected, Reconnecting, Error]

DISCONNECTED = Disconnected()
CONNECTING = Connecting()
CONNECTED = Connected()


def describe_state(state: ConnectionState) -> str:
    if isinstance(state, Disconnected):
        return "Disconnected"
    if isinstance(state, Connecting):
        return "Connecting"
    if isinstance(state, Connected):
        return "Connected"
    if isinstance(state, Reconnecting):
        return f"Reconnecting ({state.attempt}/{state.max_attempts})"
    if isinstance(state, Error):
        if state.detail:
            return f"Error: {state.kind.value}: {state.detail}"
        return f"Error: {state.kind.value}"
    raise TypeError(f"unknown connection state {state!r}")
