"""Statistics tracking and reporting for the relay."""

from __future__ import annotations

import threading
import time


class StatsManager:
    """
    Lifetime counters for the relay process.

    Tracks:
    - Frames and bytes received
    - Undecodable frames relayed verbatim
    - Per-recipient send outcomes
    - Broadcast, directed and acknowledgment traffic
    - Connection churn and out-of-band HTTP sends
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "frames_in": 0,
            "bytes_in": 0,
            "frames_bad": 0,
            "sends_ok": 0,
            "sends_failed": 0,
            "broadcasts": 0,
            "directed": 0,
            "acks_sent": 0,
            "connects": 0,
            "disconnects": 0,
            "http_sends": 0,
        }

    def set_start_time(self) -> None:
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def format_stats(self, *, clients: int = 0, rooms: int = 0, top_rooms=()) -> str:
        """Format current statistics as human-readable lines."""
        from . import __version__

        started = self.started_monotonic
        uptime_s = (time.monotonic() - started) if started is not None else 0.0
        c = self.snapshot()

        lines: list[str] = []
        lines.append(f"chatrelay {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        lines.append(f"clients={clients} rooms={rooms}")
        if top_rooms:
            lines.append("top_rooms=" + ", ".join(f"{r}:{n}" for r, n in top_rooms))
        lines.append(
            "io: frames_in={} frames_bad={} bytes_in={}".format(
                c.get("frames_in", 0), c.get("frames_bad", 0), c.get("bytes_in", 0)
            )
        )
        lines.append(
            "sends: ok={} failed={} broadcasts={} directed={} acks={} http={}".format(
                c.get("sends_ok", 0),
                c.get("sends_failed", 0),
                c.get("broadcasts", 0),
                c.get("directed", 0),
                c.get("acks_sent", 0),
                c.get("http_sends", 0),
            )
        )
        lines.append(
            "sessions: connects={} disconnects={}".format(
                c.get("connects", 0), c.get("disconnects", 0)
            )
        )
        return "\n".join(lines)
