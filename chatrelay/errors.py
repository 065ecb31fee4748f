"""Error taxonomy shared by the client-side connection machinery."""

from __future__ import annotations

import enum


class ErrorKind(enum.Enum):
    CONNECTION_FAILED = "connection_failed"
    CONNECTION_LOST = "connection_lost"
    MESSAGE_FAILED = "message_failed"


class RelayError(RuntimeError):
    kind: ErrorKind

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.kind.value)
        self.detail = detail


class ConnectionFailed(RelayError):
    """The transport could not be established."""

    kind = ErrorKind.CONNECTION_FAILED


class ConnectionLost(RelayError):
    """An established transport dropped without a user disconnect."""

    kind = ErrorKind.CONNECTION_LOST


class MessageFailed(RelayError):
    """A send was attempted with no live transport, or the send raised."""

    kind = ErrorKind.MESSAGE_FAILED
