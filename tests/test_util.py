import pytest

from chatrelay.errors import ErrorKind
from chatrelay.state import DISCONNECTED, Error, Reconnecting, describe_state
from chatrelay.stats import StatsManager
from chatrelay.util import chat_path, chat_url, normalize_client_id, normalize_room_id, preview


def test_chat_path_default_room_uses_short_form() -> None:
    assert chat_path("alice") == "/chat/alice"
    assert chat_path("alice", "general") == "/chat/alice"
    assert chat_path("alice", "lobby") == "/chat/lobby/alice"


def test_chat_path_quotes_ids() -> None:
    assert chat_path("a b", "r&d") == "/chat/r%26d/a%20b"


def test_chat_url() -> None:
    assert chat_url("localhost", 8080, "alice", "lobby") == "ws://localhost:8080/chat/lobby/alice"


def test_normalize_ids() -> None:
    assert normalize_client_id("  alice ") == "alice"
    assert normalize_client_id("") is None
    assert normalize_client_id("   ") is None
    assert normalize_client_id("a/b") is None
    assert normalize_client_id("a\nb") is None
    assert normalize_client_id(None) is None
    assert normalize_client_id("x" * 65) is None
    assert normalize_room_id("lobby") == "lobby"


def test_preview_truncates() -> None:
    assert preview("short") == "short"
    assert preview("x" * 10, limit=4) == "xxxx...[truncated]"


def test_describe_state_covers_variants() -> None:
    assert describe_state(DISCONNECTED) == "Disconnected"
    assert describe_state(Reconnecting(2, 10)) == "Reconnecting (2/10)"
    assert describe_state(Error(ErrorKind.CONNECTION_FAILED, "boom")) == (
        "Error: connection_failed: boom"
    )
    with pytest.raises(TypeError):
        describe_state("connected")


def test_stats_counters_and_format() -> None:
    stats = StatsManager()
    stats.inc("frames_in")
    stats.inc("bytes_in", 42)

    assert stats.get("frames_in") == 1
    assert stats.snapshot()["bytes_in"] == 42
    text = stats.format_stats(clients=2, rooms=1, top_rooms=[("lobby", 2)])
    assert "clients=2 rooms=1" in text
    assert "top_rooms=lobby:2" in text
