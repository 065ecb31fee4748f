from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, replace

from .codec import decode, encode
from .constants import (
    K_AUDIO_DATA,
    K_AUDIO_DURATION,
    K_CONTENT,
    K_MESSAGE_ID,
    K_SEND_TO,
    K_SENDER,
    K_STATUS,
    K_TIMESTAMP,
    K_TYPE,
    KIND_STATUS,
    KIND_TEXT,
    KIND_TYPING,
    KIND_VOICE,
    KINDS,
    SERVER_SENDER,
    STATUS_DELIVERED,
    STATUSES,
)


def now_ms() -> int:
    return int(time.time() * 1000)


def msg_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Envelope:
    """One chat message unit as exchanged over the wire.

    ``send_to`` decides the delivery semantics: absent means a room
    broadcast, present means directed delivery to that one client.
    """

    sender: str
    content: str = ""
    timestamp: int = 0
    kind: str = KIND_TEXT
    audio_data: str | None = None
    audio_duration: int = 0
    send_to: str | None = None
    message_id: str | None = None
    status: str | None = None

    @property
    def is_directed(self) -> bool:
        return self.send_to is not None

    @property
    def is_typing(self) -> bool:
        return self.kind == KIND_TYPING

    @property
    def is_status(self) -> bool:
        return self.kind == KIND_STATUS

    @property
    def is_voice(self) -> bool:
        return self.kind == KIND_VOICE

    @property
    def is_trackable(self) -> bool:
        """True if the relay should acknowledge this envelope."""
        if self.kind in (KIND_TYPING, KIND_STATUS):
            return False
        return bool(self.message_id)

    def to_wire(self) -> dict:
        wire: dict[str, object] = {
            K_SENDER: self.sender,
            K_CONTENT: self.content,
            K_TIMESTAMP: self.timestamp,
            K_TYPE: self.kind,
            K_AUDIO_DURATION: self.audio_duration,
        }
        if self.audio_data is not None:
            wire[K_AUDIO_DATA] = self.audio_data
        if self.send_to is not None:
            wire[K_SEND_TO] = self.send_to
        if self.message_id is not None:
            wire[K_MESSAGE_ID] = self.message_id
        if self.status is not None:
            wire[K_STATUS] = self.status
        return wire

    @classmethod
    def from_wire(cls, data: dict) -> Envelope:
        validate_envelope(data)
        ts = data.get(K_TIMESTAMP)
        return cls(
            sender=data[K_SENDER],
            content=data[K_CONTENT],
            timestamp=now_ms() if ts is None else ts,
            kind=data.get(K_TYPE) or KIND_TEXT,
            audio_data=data.get(K_AUDIO_DATA),
            audio_duration=data.get(K_AUDIO_DURATION) or 0,
            send_to=data.get(K_SEND_TO),
            message_id=data.get(K_MESSAGE_ID),
            status=data.get(K_STATUS),
        )

    def with_status(self, status: str) -> Envelope:
        return replace(self, status=status)


def make_envelope(
    kind: str = KIND_TEXT,
    *,
    sender: str,
    content: str = "",
    ts: int | None = None,
    audio_data: str | None = None,
    audio_duration: int = 0,
    send_to: str | None = None,
    message_id: str | None = None,
    status: str | None = None,
) -> Envelope:
    return Envelope(
        sender=sender,
        content=content,
        timestamp=ts or now_ms(),
        kind=kind,
        audio_data=audio_data,
        audio_duration=int(audio_duration),
        send_to=send_to,
        message_id=message_id,
        status=status,
    )


def make_delivery_ack(original: Envelope, recipient: str) -> Envelope:
    """Build the single-hop ``delivered`` acknowledgment for ``original``."""
    return make_envelope(
        KIND_STATUS,
        sender=SERVER_SENDER,
        send_to=recipient,
        message_id=original.message_id,
        status=STATUS_DELIVERED,
    )


def _check_optional_str(data: dict, key: str) -> None:
    v = data.get(key)
    if v is not None and not isinstance(v, str):
        raise TypeError(f"{key} must be a string or null")


def validate_envelope(data: dict) -> None:
    if not isinstance(data, dict):
        raise TypeError("envelope must be a JSON object")

    for k in (K_SENDER, K_CONTENT):
        if k not in data:
            raise ValueError(f"missing envelope key {k!r}")

    if not isinstance(data[K_SENDER], str):
        raise TypeError("sender must be a string")
    if not isinstance(data[K_CONTENT], str):
        raise TypeError("content must be a string")

    ts = data.get(K_TIMESTAMP)
    if ts is not None:
        if not isinstance(ts, int) or isinstance(ts, bool):
            raise TypeError("timestamp must be an integer")
        if ts < 0:
            raise ValueError("timestamp must be unsigned")

    kind = data.get(K_TYPE)
    if kind is not None:
        if not isinstance(kind, str):
            raise TypeError("type must be a string")
        if kind not in KINDS:
            raise ValueError(f"unsupported message type {kind!r}")

    duration = data.get(K_AUDIO_DURATION)
    if duration is not None:
        if not isinstance(duration, int) or isinstance(duration, bool):
            raise TypeError("audioDuration must be an integer")
        if duration < 0:
            raise ValueError("audioDuration must be unsigned")

    for k in (K_AUDIO_DATA, K_SEND_TO, K_MESSAGE_ID, K_STATUS):
        _check_optional_str(data, k)

    status = data.get(K_STATUS)
    if status is not None and status not in STATUSES:
        raise ValueError(f"unsupported delivery status {status!r}")


def parse_envelope(text: str | bytes) -> Envelope:
    """Decode one wire frame. Raises ValueError/TypeError on bad input."""
    try:
        data = decode(text)
    except ValueError as e:
        raise ValueError(f"invalid JSON: {e}") from e
    return Envelope.from_wire(data)


def serialize_envelope(env: Envelope) -> str:
    return encode(env.to_wire())
