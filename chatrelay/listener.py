from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from aiohttp import WSCloseCode, WSMsgType, web

from .constants import KIND_TEXT, SERVER_SENDER
from .envelope import make_envelope, serialize_envelope
from .util import normalize_client_id, normalize_room_id

if TYPE_CHECKING:
    from .config import RelayRuntimeConfig
    from .registry import ConnectionRegistry
    from .router import MessageRouter


class TransportListener:
    """
    Accepts WebSocket connections and pumps their frames into the router.

    Paths: ``/chat/{client_id}`` joins the default room,
    ``/chat/{room_id}/{client_id}`` joins an explicit room.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        router: MessageRouter,
        config: RelayRuntimeConfig,
    ) -> None:
        self.registry = registry
        self.router = router
        self.config = config
        self.log = logging.getLogger("chatrelay.listener")

    def routes(self) -> list[web.RouteDef]:
        return [
            web.get("/chat/{client_id}", self.handle),
            web.get("/chat/{room_id}/{client_id}", self.handle),
        ]

    def _resolve_ids(self, request: web.Request) -> tuple[str, str]:
        client_id = normalize_client_id(request.match_info.get("client_id"))
        if client_id is None:
            raise web.HTTPBadRequest(text="invalid client id")

        raw_room = request.match_info.get("room_id")
        if raw_room is None:
            return client_id, self.config.default_room
        room_id = normalize_room_id(raw_room)
        if room_id is None:
            raise web.HTTPBadRequest(text="invalid room id")
        return client_id, room_id

    async def handle(self, request: web.Request) -> web.WebSocketResponse:
        client_id, room_id = self._resolve_ids(request)

        heartbeat = float(self.config.heartbeat_s) if self.config.heartbeat_s else None
        ws = web.WebSocketResponse(
            heartbeat=heartbeat, max_msg_size=int(self.config.max_frame_bytes)
        )
        await ws.prepare(request)

        self.registry.add(client_id, ws, room_id)
        try:
            welcome = make_envelope(
                KIND_TEXT,
                sender=SERVER_SENDER,
                content=self.config.welcome_template.format(client_id=client_id),
                send_to=client_id,
            )
            await self.registry.send_to(client_id, serialize_envelope(welcome))

            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self.router.route(client_id, room_id, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    self.log.warning(
                        "Connection error client_id=%s: %s", client_id, ws.exception()
                    )
                    break
                else:
                    self.log.debug(
                        "Ignoring non-text frame client_id=%s type=%s", client_id, msg.type
                    )
        except Exception:
            self.log.exception("Connection loop failed client_id=%s", client_id)
        finally:
            self.registry.remove(client_id, handle=ws)
            if not ws.closed:
                await ws.close(code=WSCloseCode.INTERNAL_ERROR, message=b"Relay error")
            self.log.debug("Connection closed client_id=%s code=%s", client_id, ws.close_code)

        return ws
