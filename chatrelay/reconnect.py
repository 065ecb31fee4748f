from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable

from .constants import (
    INITIAL_BACKOFF_MS,
    MAX_BACKOFF_MS,
    MAX_RECONNECT_ATTEMPTS,
    RECONNECT_SETTLE_MS,
)
from .envelope import Envelope, serialize_envelope
from .errors import ConnectionFailed, ConnectionLost, ErrorKind, MessageFailed, RelayError
from .state import (
    CONNECTED,
    CONNECTING,
    DISCONNECTED,
    Connected,
    ConnectionState,
    Error,
    Reconnecting,
    describe_state,
)

if TYPE_CHECKING:
    from .config import ClientConfig
    from .transport import Transport

StateListener = Callable[[ConnectionState], None]
NoticeListener = Callable[[ErrorKind, "str | None"], None]
TextListener = Callable[[str], None]


def backoff_delay_ms(
    attempt: int,
    *,
    initial_backoff_ms: int = INITIAL_BACKOFF_MS,
    max_backoff_ms: int = MAX_BACKOFF_MS,
) -> int:
    """Delay before reconnect attempt ``attempt`` (1-indexed)."""
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    # Cap the exponent so large attempt numbers cannot build huge ints.
    exp = min(attempt - 1, 62)
    return int(min(initial_backoff_ms * (1 << exp), max_backoff_ms))


class ReconnectController:
    """
    Client connection state machine with bounded exponential-backoff reconnect.

    Responsibilities:
    - Explicit ``connect``/``disconnect`` driven by the user
    - Automatic reconnect when an established connection is lost
    - Message history that survives reconnects
    - Error notices paired with every ``Error`` state
    """

    def __init__(
        self,
        transport: Transport,
        *,
        initial_backoff_ms: int = INITIAL_BACKOFF_MS,
        max_backoff_ms: int = MAX_BACKOFF_MS,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        settle_ms: int = RECONNECT_SETTLE_MS,
    ) -> None:
        self.transport = transport
        self.initial_backoff_ms = int(initial_backoff_ms)
        self.max_backoff_ms = int(max_backoff_ms)
        self.max_attempts = int(max_attempts)
        self.settle_ms = int(settle_ms)
        self.log = logging.getLogger("chatrelay.reconnect")

        self.history: list[Envelope] = []
        self.last_error: RelayError | None = None

        self._state: ConnectionState = DISCONNECTED
        self._url: str | None = None
        self._user_disconnected = False
        self._connect_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        # Loss reported by the transport before the controller saw open() finish.
        self._early_loss: BaseException | None = None

        self._state_listeners: list[StateListener] = []
        self._notice_listeners: list[NoticeListener] = []
        self._text_listeners: list[TextListener] = []

        transport.set_callbacks(self._on_transport_text, self._on_transport_lost)

    @classmethod
    def from_config(cls, transport: Transport, cfg: ClientConfig) -> ReconnectController:
        return cls(
            transport,
            initial_backoff_ms=cfg.initial_backoff_ms,
            max_backoff_ms=cfg.max_backoff_ms,
            max_attempts=cfg.max_reconnect_attempts,
            settle_ms=cfg.reconnect_settle_ms,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_reconnecting(self) -> bool:
        task = self._reconnect_task
        return task is not None and not task.done()

    def add_state_listener(self, cb: StateListener) -> None:
        self._state_listeners.append(cb)

    def add_notice_listener(self, cb: NoticeListener) -> None:
        self._notice_listeners.append(cb)

    def add_text_listener(self, cb: TextListener) -> None:
        self._text_listeners.append(cb)

    def backoff_delay_ms(self, attempt: int) -> int:
        return backoff_delay_ms(
            attempt,
            initial_backoff_ms=self.initial_backoff_ms,
            max_backoff_ms=self.max_backoff_ms,
        )

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        self.log.debug("State -> %s", describe_state(state))
        for cb in list(self._state_listeners):
            cb(state)

    def _notice(self, kind: ErrorKind, detail: str | None) -> None:
        self.log.warning("%s: %s", kind.value, detail or "-")
        for cb in list(self._notice_listeners):
            cb(kind, detail)

    def _report(self, err: RelayError) -> None:
        self.last_error = err
        self._notice(err.kind, err.detail)

    def _fail(self, err: RelayError) -> None:
        self._set_state(Error(err.kind, err.detail))
        self._report(err)

    def record(self, env: Envelope) -> None:
        self.history.append(env)

    async def connect(self, url: str) -> bool:
        """Open a fresh connection to ``url``. Returns True once connected.

        Clears history and re-enables automatic reconnect. A failure leaves
        the controller in ``Error(CONNECTION_FAILED)`` without retrying.
        """
        await self._cancel_tasks()
        self._user_disconnected = False
        self._url = url
        self.history.clear()

        await self.transport.close()
        self._set_state(CONNECTING)
        self._early_loss = None

        task = asyncio.ensure_future(self.transport.open(url))
        self._connect_task = task
        try:
            await asyncio.wait({task})
        finally:
            if self._connect_task is task:
                self._connect_task = None
            if not task.done():
                task.cancel()

        if task.cancelled():
            # disconnect() interrupted the attempt and already set the state.
            return False
        exc = task.exception()
        if exc is not None:
            self._fail(ConnectionFailed(str(exc) or type(exc).__name__))
            return False

        self._set_state(CONNECTED)
        if not self.transport.is_open:
            # The peer hung up while open() was still returning.
            self._handle_loss(self._early_loss)
            return False
        return True

    async def disconnect(self) -> None:
        """User-initiated disconnect; cancels any connect or reconnect in flight."""
        self._user_disconnected = True
        await self._cancel_tasks()
        await self.transport.close()
        self.history.clear()
        self._set_state(DISCONNECTED)

    async def aclose(self) -> None:
        await self.disconnect()
        await self.transport.aclose()

    async def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        tasks = [
            t
            for t in (self._reconnect_task, self._connect_task)
            if t is not None and t is not current
        ]
        self._reconnect_task = None
        self._connect_task = None
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def send(self, text: str) -> None:
        if not isinstance(self._state, Connected) or not self.transport.is_open:
            err = MessageFailed("Not connected")
            self._report(err)
            raise err
        try:
            await self.transport.send(text)
        except Exception as e:
            err = MessageFailed(str(e) or type(e).__name__)
            self._report(err)
            raise err from e

    async def send_envelope(self, env: Envelope) -> None:
        await self.send(serialize_envelope(env))

    def _on_transport_text(self, text: str) -> None:
        for cb in list(self._text_listeners):
            cb(text)

    def _on_transport_lost(self, exc: BaseException | None) -> None:
        if self._user_disconnected:
            return
        if not isinstance(self._state, Connected):
            self._early_loss = exc
            return
        self._handle_loss(exc)

    def _handle_loss(self, exc: BaseException | None) -> None:
        detail = (str(exc) or type(exc).__name__) if exc is not None else "Connection closed by peer"
        self._report(ConnectionLost(detail))
        self._start_reconnect()

    def _start_reconnect(self) -> None:
        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._reconnect_task = asyncio.create_task(
            self._reconnect_loop(), name="chatrelay-reconnect"
        )

    async def _reconnect_loop(self) -> None:
        for attempt in range(1, self.max_attempts + 1):
            self._set_state(Reconnecting(attempt, self.max_attempts))

            delay_ms = self.backoff_delay_ms(attempt)
            self.log.info(
                "Reconnect attempt %s/%s in %sms", attempt, self.max_attempts, delay_ms
            )
            await asyncio.sleep(delay_ms / 1000.0)

            if self._user_disconnected or self._url is None:
                return

            if await self._attempt_once(self._url):
                self.log.info("Reconnected on attempt %s", attempt)
                self._set_state(CONNECTED)
                return

        self._fail(ConnectionFailed(f"Reconnect failed after {self.max_attempts} attempts"))

    async def _attempt_once(self, url: str) -> bool:
        """Issue one attempt and watch it for the settle window."""
        loop = asyncio.get_running_loop()
        settle_s = self.settle_ms / 1000.0
        started = loop.time()
        self._early_loss = None
        try:
            await asyncio.wait_for(self.transport.open(url), timeout=settle_s)
            if self.transport.is_open:
                return True
            self.log.debug("Reconnect attempt closed before settling: %s", self._early_loss)
        except asyncio.TimeoutError:
            self.log.debug("Reconnect attempt did not settle within %sms", self.settle_ms)
        except Exception as e:
            self.log.debug("Reconnect attempt failed: %s", e)

        # Keep attempts spaced by the full settle window.
        remaining = settle_s - (loop.time() - started)
        if remaining > 0:
            await asyncio.sleep(remaining)
        return False
