from __future__ import annotations

import logging
from typing import Callable

from .constants import STATUS_SENT
from .envelope import Envelope

StatusListener = Callable[[str, str], None]


class DeliveryTracker:
    """Delivery status of locally originated trackable messages.

    Entries are seeded as ``sent`` and only ever updated in place by
    matching status envelopes. There is no retry or timeout: a message whose
    ack never arrives stays ``sent``.
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("chatrelay.delivery")
        self._status: dict[str, str] = {}
        self._listeners: list[StatusListener] = []

    def add_listener(self, cb: StatusListener) -> None:
        self._listeners.append(cb)

    def track(self, message_id: str) -> None:
        self._status[message_id] = STATUS_SENT

    def apply(self, env: Envelope) -> bool:
        """Apply a status envelope. Returns True if a tracked entry changed."""
        if not env.is_status or not env.message_id or env.status is None:
            return False
        if env.message_id not in self._status:
            self.log.debug("Dropping ack for unknown message_id=%s", env.message_id)
            return False

        self._status[env.message_id] = env.status
        for cb in list(self._listeners):
            cb(env.message_id, env.status)
        return True

    def status_of(self, message_id: str) -> str | None:
        return self._status.get(message_id)

    def snapshot(self) -> dict[str, str]:
        return dict(self._status)

    def __len__(self) -> int:
        return len(self._status)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._status
