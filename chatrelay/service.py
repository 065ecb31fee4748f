from __future__ import annotations

import asyncio
import logging
import signal

from aiohttp import WSCloseCode, web

from .config import RelayRuntimeConfig
from .envelope import parse_envelope, serialize_envelope
from .listener import TransportListener
from .registry import ConnectionRegistry
from .router import MessageRouter
from .stats import StatsManager
from .util import normalize_room_id


class RelayService:
    """Owns the registry, router and listener, and serves them over aiohttp.

    Everything is constructed explicitly here and passed down by reference;
    there is no ambient lookup of the registry.
    """

    def __init__(self, config: RelayRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("chatrelay.service")

        self.stats_manager = StatsManager()
        self.registry = ConnectionRegistry(stats=self.stats_manager)
        self.router = MessageRouter(self.registry, stats=self.stats_manager)
        self.listener = TransportListener(self.registry, self.router, config)

        self.app = self.build_app()
        self._runner: web.AppRunner | None = None
        self._shutdown = asyncio.Event()

    def build_app(self) -> web.Application:
        app = web.Application()
        app.add_routes(
            [
                web.get("/health", self._health),
                web.get("/clients", self._clients),
                web.get("/rooms", self._rooms),
                web.get("/rooms/{room_id}", self._room_members),
                web.get("/stats", self._stats),
                web.post("/send", self._send),
            ]
        )
        app.add_routes(self.listener.routes())
        app.on_startup.append(self._on_startup)
        app.on_shutdown.append(self._on_shutdown)
        return app

    async def _on_startup(self, app: web.Application) -> None:
        self.stats_manager.set_start_time()

    async def _on_shutdown(self, app: web.Application) -> None:
        handles = self.registry.handles()
        if handles:
            self.log.info("Closing %s connection(s)", len(handles))
        for client_id, ws in handles:
            try:
                await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")
            except Exception as e:
                self.log.debug("Close failed client_id=%s: %s", client_id, e)
            self.registry.remove(client_id, handle=ws)

    async def _health(self, request: web.Request) -> web.Response:
        return web.Response(text="Server is running")

    async def _clients(self, request: web.Request) -> web.Response:
        return web.json_response(sorted(self.registry.connected_clients()))

    async def _rooms(self, request: web.Request) -> web.Response:
        return web.json_response(sorted(self.registry.active_rooms()))

    async def _room_members(self, request: web.Request) -> web.Response:
        room_id = normalize_room_id(request.match_info.get("room_id"))
        if room_id is None:
            raise web.HTTPBadRequest(text="invalid room id")
        return web.json_response(sorted(self.registry.room_members(room_id)))

    async def _stats(self, request: web.Request) -> web.Response:
        reg = self.registry.get_stats()
        text = self.stats_manager.format_stats(
            clients=reg["clients_total"],
            rooms=reg["rooms_total"],
            top_rooms=reg["top_rooms"],
        )
        return web.Response(text=text)

    async def _send(self, request: web.Request) -> web.Response:
        """Out-of-band broadcast: POST an envelope, deliver it to every client."""
        body = await request.text()
        try:
            env = parse_envelope(body)
        except (ValueError, TypeError) as e:
            raise web.HTTPBadRequest(text=f"invalid message: {e}")

        self.stats_manager.inc("http_sends")
        self.log.info("[POST /send] %s: %s", env.sender, env.content)
        delivered = await self.registry.broadcast(serialize_envelope(env))
        return web.Response(text=f"Message sent to {delivered} client(s)")

    async def start(self) -> None:
        self.log.info("Starting relay on %s:%s", self.config.host, self.config.port)
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.host, int(self.config.port))
        await site.start()
        self.log.info(
            "Relay running default_room=%s heartbeat_s=%s max_frame_bytes=%s",
            self.config.default_room,
            self.config.heartbeat_s,
            self.config.max_frame_bytes,
        )

    async def stop(self) -> None:
        self._shutdown.set()
        runner, self._runner = self._runner, None
        if runner is not None:
            await runner.cleanup()
        self.log.info("Relay stopped")

    async def serve_forever(self) -> None:
        await self.start()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._shutdown.set)
            except NotImplementedError:
                # Not available on every platform (e.g. Windows).
                pass

        try:
            await self._shutdown.wait()
        finally:
            await self.stop()

    def run_forever(self) -> None:
        asyncio.run(self.serve_forever())
