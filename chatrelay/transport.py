from __future__ import annotations

import asyncio
import logging
from typing import Callable

import aiohttp

TextCallback = Callable[[str], None]
LostCallback = Callable[["BaseException | None"], None]


class Transport:
    """A persistent duplex text connection.

    ``open`` returns once the connection is established (or raises), after
    which inbound text frames are delivered to the text callback from a
    single reader task. If the connection ends without ``close`` having been
    called, the lost callback fires once with the causing exception (or None
    for a clean peer close).
    """

    def __init__(self) -> None:
        self._on_text: TextCallback | None = None
        self._on_lost: LostCallback | None = None

    def set_callbacks(self, on_text: TextCallback, on_lost: LostCallback) -> None:
        self._on_text = on_text
        self._on_lost = on_lost

    @property
    def is_open(self) -> bool:
        raise NotImplementedError

    async def open(self, url: str) -> None:
        raise NotImplementedError

    async def send(self, text: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        await self.close()

    def _emit_text(self, text: str) -> None:
        if self._on_text is not None:
            self._on_text(text)

    def _emit_lost(self, exc: BaseException | None) -> None:
        if self._on_lost is not None:
            self._on_lost(exc)


class WebSocketTransport(Transport):
    """aiohttp client WebSocket implementation of :class:`Transport`."""

    def __init__(self, *, heartbeat_s: float | None = 15.0) -> None:
        super().__init__()
        self.log = logging.getLogger("chatrelay.transport")
        self.heartbeat_s = heartbeat_s or None
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task | None = None
        self._closing = False

    @property
    def is_open(self) -> bool:
        ws = self._ws
        return ws is not None and not ws.closed

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def open(self, url: str) -> None:
        await self.close()
        self._closing = False

        self.log.info("Connecting to %s", url)
        ws = await self._ensure_session().ws_connect(url, heartbeat=self.heartbeat_s)
        self._ws = ws
        self._reader = asyncio.create_task(self._read_loop(ws), name="chatrelay-reader")
        self.log.info("Connected to %s", url)

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        error: BaseException | None = None
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._emit_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = ws.exception()
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e

        if self._ws is ws:
            self._ws = None
        if not self._closing:
            if error is not None:
                self.log.warning("Connection lost: %s", error)
            else:
                self.log.info("Server closed connection code=%s", ws.close_code)
            self._emit_lost(error)

    async def send(self, text: str) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            raise ConnectionResetError("Not connected")
        await ws.send_str(text)

    async def close(self) -> None:
        self._closing = True
        ws, self._ws = self._ws, None
        reader, self._reader = self._reader, None

        if ws is not None and not ws.closed:
            try:
                await asyncio.wait_for(ws.close(), timeout=5.0)
            except (asyncio.TimeoutError, aiohttp.ClientError, OSError) as e:
                self.log.debug("Close failed: %s", e)

        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

    async def aclose(self) -> None:
        await self.close()
        session, self._session = self._session, None
        if session is not None and not session.closed:
            await session.close()
