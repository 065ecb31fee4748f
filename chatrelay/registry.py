"""Live connection table and room membership for the relay.

This module handles:
- The client id -> send handle table
- Room membership (room id -> member ids) and its reverse index
- Fan-out delivery with per-recipient failure isolation
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Any

from .constants import DEFAULT_ROOM

if TYPE_CHECKING:
    from .stats import StatsManager


class ConnectionRegistry:
    """Tracks live connections and the room each one belongs to.

    A handle is anything with an awaitable ``send_str(str)`` (an aiohttp
    ``WebSocketResponse`` in production). The three maps are guarded by one
    re-entrant lock that is never held across an ``await``: send primitives
    snapshot their recipients under the lock and deliver outside it.
    """

    def __init__(self, stats: StatsManager | None = None) -> None:
        self.log = logging.getLogger("chatrelay.registry")
        self.stats = stats
        self._lock = threading.RLock()
        self._connections: dict[str, Any] = {}
        self._rooms: dict[str, set[str]] = {}
        self._client_rooms: dict[str, str] = {}

    def add(self, client_id: str, handle: Any, room_id: str = DEFAULT_ROOM) -> None:
        """Register ``handle`` for ``client_id`` in ``room_id``.

        A prior handle for the same id is superseded without notice.
        """
        with self._lock:
            prior = self._connections.get(client_id)
            self._connections[client_id] = handle

            old_room = self._client_rooms.get(client_id)
            if old_room is not None and old_room != room_id:
                self._discard_member(old_room, client_id)

            self._rooms.setdefault(room_id, set()).add(client_id)
            self._client_rooms[client_id] = room_id
            total = len(self._connections)

        if prior is not None and prior is not handle:
            self.log.warning(
                "Superseded existing connection client_id=%s room=%s", client_id, room_id
            )
        if self.stats is not None:
            self.stats.inc("connects")
        self.log.info("Client connected client_id=%s room=%s total=%s", client_id, room_id, total)

    def remove(self, client_id: str, handle: Any = None) -> bool:
        """Drop ``client_id`` from the table, its room and the reverse index.

        Idempotent. When ``handle`` is given the entry is only removed if it
        still maps to that handle, so a superseded session never evicts its
        replacement. Returns True if an entry was removed.
        """
        with self._lock:
            current = self._connections.get(client_id)
            if current is None:
                return False
            if handle is not None and current is not handle:
                return False

            self._connections.pop(client_id, None)
            room_id = self._client_rooms.pop(client_id, None)
            if room_id is not None:
                self._discard_member(room_id, client_id)
            total = len(self._connections)

        if self.stats is not None:
            self.stats.inc("disconnects")
        self.log.info("Client disconnected client_id=%s total=%s", client_id, total)
        return True

    def _discard_member(self, room_id: str, client_id: str) -> None:
        # Lock must be held.
        members = self._rooms.get(room_id)
        if members is None:
            return
        members.discard(client_id)
        if not members:
            self._rooms.pop(room_id, None)

    async def broadcast(self, payload: str, exclude_id: str | None = None) -> int:
        """Send ``payload`` to every connection except ``exclude_id``."""
        with self._lock:
            outgoing = [
                (cid, h) for cid, h in self._connections.items() if cid != exclude_id
            ]
        return await self._deliver(outgoing, payload)

    async def broadcast_to_room(
        self, room_id: str, payload: str, exclude_id: str | None = None
    ) -> int:
        """Send ``payload`` to every member of ``room_id`` except ``exclude_id``."""
        with self._lock:
            members = self._rooms.get(room_id)
            if not members:
                return 0
            outgoing = [
                (cid, self._connections[cid])
                for cid in members
                if cid != exclude_id and cid in self._connections
            ]
        return await self._deliver(outgoing, payload)

    async def send_to(self, client_id: str, payload: str) -> bool:
        """Send ``payload`` to one client. Unknown ids are a silent no-op."""
        with self._lock:
            handle = self._connections.get(client_id)
        if handle is None:
            return False
        return await self._send_one(client_id, handle, payload)

    async def _deliver(self, outgoing: list[tuple[str, Any]], payload: str) -> int:
        if not outgoing:
            return 0
        results = await asyncio.gather(
            *(self._send_one(cid, h, payload) for cid, h in outgoing)
        )
        return sum(1 for ok in results if ok)

    async def _send_one(self, client_id: str, handle: Any, payload: str) -> bool:
        try:
            await handle.send_str(payload)
        except Exception as e:
            self.log.warning("Message send failed client_id=%s: %s", client_id, e)
            if self.stats is not None:
                self.stats.inc("sends_failed")
            self.remove(client_id, handle=handle)
            return False
        if self.stats is not None:
            self.stats.inc("sends_ok")
        return True

    def connected_clients(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._connections)

    def room_members(self, room_id: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._rooms.get(room_id, ()))

    def active_rooms(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._rooms)

    def client_room(self, client_id: str) -> str | None:
        with self._lock:
            return self._client_rooms.get(client_id)

    def handles(self) -> list[tuple[str, Any]]:
        """Snapshot of (client_id, handle) pairs, for shutdown."""
        with self._lock:
            return list(self._connections.items())

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            clients_total = len(self._connections)
            rooms_total = len(self._rooms)
            top_rooms = sorted(
                ((room, len(members)) for room, members in self._rooms.items()),
                key=lambda x: (-x[1], x[0]),
            )[:5]
        return {
            "clients_total": clients_total,
            "rooms_total": rooms_total,
            "top_rooms": top_rooms,
        }
