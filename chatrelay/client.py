"""Client facade tying the transport, connection state and projections together."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Callable

import aiohttp

from .config import ClientConfig
from .constants import (
    KIND_TEXT,
    KIND_TYPING,
    KIND_VOICE,
    STATUS_SENT,
    TYPING_START,
    TYPING_STOP,
    UNKNOWN_SENDER,
)
from .delivery import DeliveryTracker, StatusListener
from .envelope import Envelope, make_envelope, msg_id, parse_envelope
from .reconnect import NoticeListener, ReconnectController, StateListener
from .state import Connected, ConnectionState
from .transport import Transport, WebSocketTransport
from .typing_indicator import TypingIndicatorController, TypingListener
from .util import chat_url, preview

MessageListener = Callable[[Envelope], None]


class ChatClient:
    """
    One chat participant.

    Inbound frames are decoded and fanned out:
    - typing envelopes feed the typing indicator
    - status envelopes update delivery status (and the history copy)
    - everything else is appended to history and passed to message listeners

    Undecodable frames become a synthetic text message from ``"unknown"``.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: Transport | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.log = logging.getLogger("chatrelay.client")

        self.transport = transport or WebSocketTransport(heartbeat_s=self.config.heartbeat_s)
        self.connection = ReconnectController.from_config(self.transport, self.config)
        self.typing = TypingIndicatorController(
            self._send_typing,
            debounce_ms=self.config.typing_debounce_ms,
            expire_ms=self.config.typing_expire_ms,
        )
        self.delivery = DeliveryTracker()

        self.client_id = self.config.client_id
        self.room_id = self.config.room_id
        self.host = self.config.host
        self.port = self.config.port

        self.online_users: list[str] = []
        self._poll_task: asyncio.Task | None = None
        self._message_listeners: list[MessageListener] = []

        self.connection.add_text_listener(self.dispatch)
        self.connection.add_state_listener(self._on_state)

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def messages(self) -> list[Envelope]:
        return list(self.connection.history)

    def add_message_listener(self, cb: MessageListener) -> None:
        self._message_listeners.append(cb)

    def add_state_listener(self, cb: StateListener) -> None:
        self.connection.add_state_listener(cb)

    def add_notice_listener(self, cb: NoticeListener) -> None:
        self.connection.add_notice_listener(cb)

    def add_typing_listener(self, cb: TypingListener) -> None:
        self.typing.add_listener(cb)

    def add_status_listener(self, cb: StatusListener) -> None:
        self.delivery.add_listener(cb)

    # Connection lifecycle

    async def connect(
        self,
        host: str | None = None,
        port: int | None = None,
        client_id: str | None = None,
        room_id: str | None = None,
    ) -> bool:
        if host is not None:
            self.host = host
        if port is not None:
            self.port = int(port)
        if client_id is not None:
            self.client_id = client_id
        if room_id is not None:
            self.room_id = room_id

        self.typing.clear()
        url = chat_url(self.host, self.port, self.client_id, self.room_id)
        return await self.connection.connect(url)

    async def disconnect(self) -> None:
        if isinstance(self.connection.state, Connected) and self.typing.is_typing_locally:
            self.typing.send_stop()
        await self.typing.aclose()
        await self._stop_polling_and_wait()
        await self.connection.disconnect()

    async def aclose(self) -> None:
        await self.typing.aclose()
        await self._stop_polling_and_wait()
        await self.connection.aclose()

    # Inbound

    def dispatch(self, text: str) -> None:
        try:
            env = parse_envelope(text)
        except (ValueError, TypeError) as e:
            self.log.debug("Undecodable frame (%s): %s", e, preview(text))
            env = make_envelope(KIND_TEXT, sender=UNKNOWN_SENDER, content=text)

        # Anything but a typing start from this sender means they stopped typing.
        self.typing.on_envelope(env)
        if env.is_typing:
            return

        if env.is_status:
            if self.delivery.apply(env):
                self._update_history_status(env.message_id, env.status)
            return

        self.connection.record(env)
        for cb in list(self._message_listeners):
            cb(env)

    def _update_history_status(self, message_id: str, status: str) -> None:
        history = self.connection.history
        for i, env in enumerate(history):
            if env.message_id == message_id:
                history[i] = replace(env, status=status)

    # Outbound

    async def send_text(self, content: str, send_to: str | None = None) -> Envelope:
        """Send a text message and return the local copy (status ``sent``).

        Raises :class:`~chatrelay.errors.MessageFailed` if not connected.
        """
        return await self._send_trackable(
            make_envelope(
                KIND_TEXT,
                sender=self.client_id,
                content=content,
                send_to=send_to,
                message_id=msg_id(),
            )
        )

    async def send_voice(
        self, audio_data: str, duration_ms: int, send_to: str | None = None
    ) -> Envelope:
        """Send a voice note; ``audio_data`` is base64 text of the encoded audio."""
        return await self._send_trackable(
            make_envelope(
                KIND_VOICE,
                sender=self.client_id,
                audio_data=audio_data,
                audio_duration=duration_ms,
                send_to=send_to,
                message_id=msg_id(),
            )
        )

    async def _send_trackable(self, env: Envelope) -> Envelope:
        if self.typing.is_typing_locally:
            self.typing.send_stop()
        await self.connection.send_envelope(env)
        self.delivery.track(env.message_id)
        local = env.with_status(STATUS_SENT)
        self.connection.record(local)
        return local

    def on_input_changed(self, text: str) -> None:
        self.typing.on_input_changed(text)

    async def _send_typing(self, typing: bool) -> None:
        # Typing signals are best effort; never raise notices while offline.
        if not isinstance(self.connection.state, Connected):
            return
        env = make_envelope(
            KIND_TYPING,
            sender=self.client_id,
            content=TYPING_START if typing else TYPING_STOP,
        )
        await self.connection.send_envelope(env)

    # Online users

    async def fetch_online_users(self) -> list[str]:
        """Connected client ids from the relay's ``/clients`` listing; [] on failure."""
        url = f"http://{self.host}:{int(self.port)}/clients"
        timeout = aiohttp.ClientTimeout(total=self.config.http_timeout_s)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as resp:
                    resp.raise_for_status()
                    data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.log.debug("Online users fetch failed: %s", e)
            return []
        if not isinstance(data, list):
            return []
        return [str(x) for x in data]

    def _on_state(self, state: ConnectionState) -> None:
        if isinstance(state, Connected):
            self._start_polling()
        else:
            self._stop_polling()

    def _start_polling(self) -> None:
        if self.config.online_users_poll_ms <= 0:
            return
        self._stop_polling()
        self._poll_task = asyncio.create_task(self._poll_loop(), name="chatrelay-online-users")

    def _stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self.online_users = []

    async def _stop_polling_and_wait(self) -> None:
        task = self._poll_task
        self._stop_polling()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def _poll_loop(self) -> None:
        interval_s = self.config.online_users_poll_ms / 1000.0
        while True:
            self.online_users = await self.fetch_online_users()
            await asyncio.sleep(interval_s)
