"""Test doubles shared by the client and server tests."""

from __future__ import annotations

import asyncio

from chatrelay.transport import Transport

HANG = object()
DROP = object()


class FakeHandle:
    """Stands in for a server-side WebSocket: records or refuses sends."""

    def __init__(self, *, fail: bool = False) -> None:
        self.sent: list[str] = []
        self.fail = fail

    async def send_str(self, payload: str) -> None:
        if self.fail:
            raise ConnectionResetError("peer gone")
        self.sent.append(payload)


class FakeTransport(Transport):
    """Scripted client transport.

    Each ``open`` consumes the next outcome: None succeeds, an exception is
    raised, ``HANG`` blocks until cancelled, ``DROP`` succeeds and then
    loses the connection on the next loop iteration. With no outcomes left, opens
    succeed.
    """

    def __init__(self, outcomes=()) -> None:
        super().__init__()
        self.outcomes = list(outcomes)
        self.urls: list[str] = []
        self.sent: list[str] = []
        self.close_calls = 0
        self._open = False

    @property
    def opened(self) -> int:
        return len(self.urls)

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self, url: str) -> None:
        self.urls.append(url)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if outcome is HANG:
            await asyncio.Event().wait()
        if isinstance(outcome, BaseException):
            raise outcome
        self._open = True
        if outcome is DROP:
            asyncio.get_running_loop().call_soon(self.drop)

    async def send(self, text: str) -> None:
        if not self._open:
            raise ConnectionResetError("Not connected")
        self.sent.append(text)

    async def close(self) -> None:
        self.close_calls += 1
        self._open = False

    def drop(self, exc: BaseException | None = None) -> None:
        self._open = False
        self._emit_lost(exc)

    def feed(self, text: str) -> None:
        self._emit_text(text)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)
