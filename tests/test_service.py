"""End-to-end relay scenarios over a real aiohttp server."""
import asyncio
import json

import pytest
import pytest_asyncio
from aiohttp import WSMsgType, test_utils
from helpers import wait_until

from chatrelay.client import ChatClient
from chatrelay.config import ClientConfig, RelayRuntimeConfig
from chatrelay.constants import KIND_STATUS, KIND_TEXT, STATUS_DELIVERED
from chatrelay.envelope import make_envelope, serialize_envelope
from chatrelay.service import RelayService
from chatrelay.state import Connected


@pytest_asyncio.fixture
async def relay():
    svc = RelayService(RelayRuntimeConfig(heartbeat_s=0))
    client = test_utils.TestClient(test_utils.TestServer(svc.app))
    await client.start_server()
    try:
        yield svc, client
    finally:
        await client.close()


async def _join(client, path: str):
    ws = await client.ws_connect(path)
    welcome = json.loads(await ws.receive_str(timeout=2))
    return ws, welcome


async def _nothing_arrives(ws) -> bool:
    try:
        await ws.receive_str(timeout=0.1)
    except asyncio.TimeoutError:
        return True
    return False


@pytest.mark.asyncio
async def test_health(relay) -> None:
    _, client = relay
    resp = await client.get("/health")
    assert resp.status == 200
    assert await resp.text() == "Server is running"


@pytest.mark.asyncio
async def test_welcome_is_sent_on_join(relay) -> None:
    svc, client = relay
    ws, welcome = await _join(client, "/chat/alice")

    assert welcome["sender"] == "server"
    assert welcome["content"] == "Welcome alice!"
    assert svc.registry.client_room("alice") == "general"
    await ws.close()


@pytest.mark.asyncio
async def test_room_broadcast_with_ack(relay) -> None:
    _, client = relay
    a, _ = await _join(client, "/chat/lobby/A")
    b, _ = await _join(client, "/chat/lobby/B")
    c, _ = await _join(client, "/chat/ops/C")

    raw = serialize_envelope(
        make_envelope(KIND_TEXT, sender="A", content="hello lobby", message_id="m1")
    )
    await a.send_str(raw)

    assert json.loads(await b.receive_str(timeout=2))["content"] == "hello lobby"
    ack = json.loads(await a.receive_str(timeout=2))
    assert ack["type"] == KIND_STATUS
    assert ack["status"] == STATUS_DELIVERED
    assert ack["messageId"] == "m1"
    assert await _nothing_arrives(a)
    assert await _nothing_arrives(c)

    for ws in (a, b, c):
        await ws.close()


@pytest.mark.asyncio
async def test_directed_message_crosses_rooms(relay) -> None:
    _, client = relay
    a, _ = await _join(client, "/chat/lobby/A")
    b, _ = await _join(client, "/chat/lobby/B")
    c, _ = await _join(client, "/chat/ops/C")

    raw = serialize_envelope(
        make_envelope(KIND_TEXT, sender="A", content="psst", send_to="C", message_id="m2")
    )
    await a.send_str(raw)

    assert json.loads(await c.receive_str(timeout=2))["content"] == "psst"
    assert json.loads(await a.receive_str(timeout=2))["messageId"] == "m2"
    assert await _nothing_arrives(b)

    for ws in (a, b, c):
        await ws.close()


@pytest.mark.asyncio
async def test_malformed_frame_is_relayed_verbatim(relay) -> None:
    _, client = relay
    a, _ = await _join(client, "/chat/lobby/A")
    b, _ = await _join(client, "/chat/lobby/B")

    await a.send_str("not json at all")

    assert await b.receive_str(timeout=2) == "not json at all"
    assert await _nothing_arrives(a)

    await a.close()
    await b.close()


@pytest.mark.asyncio
async def test_listings(relay) -> None:
    _, client = relay
    a, _ = await _join(client, "/chat/lobby/A")
    c, _ = await _join(client, "/chat/ops/C")

    assert await (await client.get("/clients")).json() == ["A", "C"]
    assert await (await client.get("/rooms")).json() == ["lobby", "ops"]
    assert await (await client.get("/rooms/lobby")).json() == ["A"]
    assert await (await client.get("/rooms/empty")).json() == []

    resp = await client.get("/stats")
    assert resp.status == 200
    assert "clients" in await resp.text()

    await a.close()
    await c.close()


@pytest.mark.asyncio
async def test_post_send_broadcasts_to_all_rooms(relay) -> None:
    _, client = relay
    a, _ = await _join(client, "/chat/lobby/A")
    c, _ = await _join(client, "/chat/ops/C")

    body = serialize_envelope(make_envelope(KIND_TEXT, sender="ops-bot", content="maintenance"))
    resp = await client.post("/send", data=body)

    assert resp.status == 200
    assert await resp.text() == "Message sent to 2 client(s)"
    assert json.loads(await a.receive_str(timeout=2))["content"] == "maintenance"
    assert json.loads(await c.receive_str(timeout=2))["content"] == "maintenance"

    await a.close()
    await c.close()


@pytest.mark.asyncio
async def test_post_send_rejects_bad_body(relay) -> None:
    _, client = relay
    resp = await client.post("/send", data="{oops")
    assert resp.status == 400
    assert (await resp.text()).startswith("invalid message")


@pytest.mark.asyncio
async def test_disconnect_removes_client(relay) -> None:
    svc, client = relay
    a, _ = await _join(client, "/chat/lobby/A")
    assert svc.registry.connected_clients() == {"A"}

    await a.close()

    await wait_until(lambda: not svc.registry.connected_clients())
    assert svc.registry.active_rooms() == frozenset()


@pytest.mark.asyncio
async def test_failing_connection_loop_still_removes_client(relay, monkeypatch) -> None:
    """An unexpected error while handling a frame drops the client exactly once."""
    svc, client = relay
    a, _ = await _join(client, "/chat/lobby/A")
    b, _ = await _join(client, "/chat/lobby/B")

    async def broken_route(client_id, room_id, raw):
        raise RuntimeError("router exploded")

    monkeypatch.setattr(svc.router, "route", broken_route)
    await a.send_str("anything")

    await wait_until(lambda: "A" not in svc.registry.connected_clients())
    assert svc.registry.room_members("lobby") == {"B"}
    assert svc.registry.client_room("A") is None
    assert svc.stats_manager.get("disconnects") == 1

    msg = await a.receive(timeout=2)
    assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED)
    await b.close()


@pytest.mark.asyncio
async def test_chat_client_end_to_end(relay) -> None:
    _, client = relay
    host, port = client.server.host, client.server.port
    peer, _ = await _join(client, "/chat/lobby/bob")

    cfg = ClientConfig(client_id="py", online_users_poll_ms=20)
    chat = ChatClient(cfg)
    try:
        assert await chat.connect(host, port, "py", "lobby") is True
        assert isinstance(chat.state, Connected)
        await wait_until(lambda: any(m.content == "Welcome py!" for m in chat.messages))

        local = await chat.send_text("hi bob")
        assert json.loads(await peer.receive_str(timeout=2))["content"] == "hi bob"
        await wait_until(lambda: chat.delivery.status_of(local.message_id) == STATUS_DELIVERED)

        await peer.send_str(
            serialize_envelope(make_envelope(KIND_TEXT, sender="bob", content="hey py"))
        )
        await wait_until(lambda: any(m.content == "hey py" for m in chat.messages))

        assert sorted(await chat.fetch_online_users()) == ["bob", "py"]
        await wait_until(lambda: sorted(chat.online_users) == ["bob", "py"])
    finally:
        await chat.aclose()
        await peer.close()
