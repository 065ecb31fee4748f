from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .envelope import make_delivery_ack, parse_envelope, serialize_envelope
from .util import preview

if TYPE_CHECKING:
    from .registry import ConnectionRegistry
    from .stats import StatsManager


class MessageRouter:
    """
    Classifies inbound frames and decides how they are delivered.

    Order of precedence for one frame:
    - Undecodable frames are relayed verbatim to the sender's room
    - Status envelopes go only to their ``sendTo`` target and are never acked
    - Directed envelopes go only to their ``sendTo`` target
    - Everything else is broadcast to the sender's room
    - Trackable envelopes earn one ``delivered`` ack back to the sender
    """

    def __init__(self, registry: ConnectionRegistry, stats: StatsManager | None = None) -> None:
        self.registry = registry
        self.stats = stats
        self.log = logging.getLogger("chatrelay.router")

    def _inc(self, key: str, delta: int = 1) -> None:
        if self.stats is not None:
            self.stats.inc(key, delta)

    async def route(self, client_id: str, room_id: str, raw: str) -> None:
        self._inc("frames_in")
        self._inc("bytes_in", len(raw))

        try:
            env = parse_envelope(raw)
        except (ValueError, TypeError) as e:
            self._inc("frames_bad")
            self.log.debug(
                "Relaying undecodable frame verbatim client_id=%s room=%s err=%s",
                client_id,
                room_id,
                e,
            )
            self._inc("broadcasts")
            await self.registry.broadcast_to_room(room_id, raw, exclude_id=client_id)
            return

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX client_id=%s room=%s type=%s send_to=%s message_id=%s content=%r",
                client_id,
                room_id,
                env.kind,
                env.send_to,
                env.message_id,
                preview(env.content),
            )

        if env.is_status:
            if env.send_to is not None:
                self._inc("directed")
                await self.registry.send_to(env.send_to, raw)
            return

        if env.is_directed:
            self._inc("directed")
            await self.registry.send_to(env.send_to, raw)
        else:
            self._inc("broadcasts")
            await self.registry.broadcast_to_room(room_id, raw, exclude_id=client_id)

        if env.is_trackable:
            ack = make_delivery_ack(env, client_id)
            if await self.registry.send_to(client_id, serialize_envelope(ack)):
                self._inc("acks_sent")
