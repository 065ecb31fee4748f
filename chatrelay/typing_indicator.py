"""Typing indicators: outbound start/stop signals and the inbound "who is typing" set."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Sequence

from .constants import TYPING_DEBOUNCE_MS, TYPING_EXPIRE_MS, TYPING_START
from .envelope import Envelope

SendTyping = Callable[[bool], Awaitable[None]]
TypingListener = Callable[[str], None]


def format_typing_text(users: Sequence[str]) -> str:
    n = len(users)
    if n == 0:
        return ""
    if n == 1:
        return f"{users[0]} is typing..."
    if n == 2:
        return f"{users[0]} and {users[1]} are typing..."
    return f"{users[0]}, {users[1]} and {n - 2} more are typing..."


class TypingIndicatorController:
    """
    Local side: debounced ``start`` signals while the user types, and a
    single idle timer that sends ``stop`` after ``debounce_ms`` of silence.

    Remote side: a set of senders currently typing, each with its own expiry
    timer. Listeners receive the display text whenever the set changes.
    """

    def __init__(
        self,
        send_typing: SendTyping,
        *,
        debounce_ms: int = TYPING_DEBOUNCE_MS,
        expire_ms: int = TYPING_EXPIRE_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._send_typing = send_typing
        self.debounce_ms = int(debounce_ms)
        self.expire_ms = int(expire_ms)
        self._clock = clock
        self.log = logging.getLogger("chatrelay.typing")

        self._last_start_sent: float | None = None
        self._stop_timer: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()

        # dict as an insertion-ordered set
        self._typing: dict[str, None] = {}
        self._expiry: dict[str, asyncio.Task] = {}
        self._listeners: list[TypingListener] = []

    def add_listener(self, cb: TypingListener) -> None:
        self._listeners.append(cb)

    @property
    def typing_users(self) -> tuple[str, ...]:
        return tuple(self._typing)

    @property
    def is_typing_locally(self) -> bool:
        return self._last_start_sent is not None or self._stop_timer is not None

    @property
    def display_text(self) -> str:
        return format_typing_text(tuple(self._typing))

    def _changed(self) -> None:
        text = self.display_text
        for cb in list(self._listeners):
            cb(text)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _send(self, typing: bool) -> None:
        try:
            await self._send_typing(typing)
        except Exception as e:
            self.log.debug("Typing signal not sent (%s): %s", "start" if typing else "stop", e)

    # Local input

    def on_input_changed(self, text: str) -> None:
        if not text:
            if self.is_typing_locally:
                self.send_stop()
            return

        now = self._clock()
        last = self._last_start_sent
        if last is None or (now - last) * 1000.0 >= self.debounce_ms:
            self._last_start_sent = now
            self._spawn(self._send(True))

        self._cancel_stop_timer()
        self._stop_timer = asyncio.create_task(self._stop_after_idle())

    def send_stop(self) -> None:
        """Send ``stop`` now and cancel the idle timer."""
        self._cancel_stop_timer()
        self._last_start_sent = None
        self._spawn(self._send(False))

    def _cancel_stop_timer(self) -> None:
        timer, self._stop_timer = self._stop_timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _stop_after_idle(self) -> None:
        await asyncio.sleep(self.debounce_ms / 1000.0)
        self._stop_timer = None
        self._last_start_sent = None
        await self._send(False)

    # Remote signals

    def on_envelope(self, env: Envelope) -> None:
        """Feed every inbound envelope; non-typing traffic clears its sender."""
        if env.is_typing and env.content == TYPING_START:
            self._mark_typing(env.sender)
        else:
            self._clear_sender(env.sender)

    def _mark_typing(self, sender: str) -> None:
        added = sender not in self._typing
        self._typing[sender] = None

        old = self._expiry.pop(sender, None)
        if old is not None:
            old.cancel()
        self._expiry[sender] = asyncio.create_task(self._expire_after(sender))

        if added:
            self._changed()

    def _clear_sender(self, sender: str) -> None:
        timer = self._expiry.pop(sender, None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()
        if sender in self._typing:
            del self._typing[sender]
            self._changed()

    async def _expire_after(self, sender: str) -> None:
        await asyncio.sleep(self.expire_ms / 1000.0)
        self._clear_sender(sender)

    def clear(self) -> None:
        """Forget all remote typers and cancel their timers."""
        for timer in self._expiry.values():
            timer.cancel()
        self._expiry.clear()
        if self._typing:
            self._typing.clear()
            self._changed()

    async def aclose(self) -> None:
        self.clear()
        timer = self._stop_timer
        self._cancel_stop_timer()
        self._last_start_sent = None
        pending = list(self._pending)
        if timer is not None:
            pending.append(timer)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
