import asyncio

import pytest

from relayremote.lib.connection import ConnectionManager, ConnectionState
from relayremote.lib.envelope import ClientIdentity
from relayremote.lib.transport import HandshakeRejected
from tests.conftest import settle

RELAY = "ws://relay.test/ws"
DELAY = 0.05


def make_conn(relay, **kwargs):
    kwargs.setdefault("reconnect_delay", DELAY)
    kwargs.setdefault("keepalive_interval", 10)
    conn = ConnectionManager(RELAY, transport_factory=relay, **kwargs)
    statuses = []
    fatal = []
    conn.on_status_change(statuses.append)
    conn.on_fatal_error(fatal.append)
    return conn, statuses, fatal


@pytest.mark.asyncio
async def test_connect_opens_into_pairing(relay):
    conn, statuses, _ = make_conn(relay)
    assert conn.status == ConnectionState.DISCONNECTED

    conn.connect("ABC")
    await settle()

    assert statuses == ["connecting", "pairing"]
    assert relay.last.url == f"{RELAY}?room=ABC&role=player"
    identify = relay.last.sent[0]
    assert identify["type"] == "client-identify"
    assert identify["clientId"] == conn.identity.client_id
    await conn.aclose()


@pytest.mark.asyncio
async def test_remote_role_in_url(relay):
    conn = ConnectionManager(RELAY, "remote", transport_factory=relay)
    conn.connect("room 1")
    await settle()
    assert relay.last.url == f"{RELAY}?room=room%201&role=remote"
    await conn.aclose()


@pytest.mark.asyncio
async def test_connect_ignored_while_active(relay):
    conn, _, _ = make_conn(relay)
    conn.connect("ABC")
    conn.connect("DEF")
    await settle()
    conn.connect("GHI")
    await settle()

    assert len(relay.attempts) == 1
    assert conn.room == "ABC"
    await conn.aclose()


@pytest.mark.asyncio
async def test_set_connected_only_from_pairing(relay):
    conn, statuses, _ = make_conn(relay)
    assert conn.set_connected() is False
    assert conn.status == ConnectionState.DISCONNECTED

    conn.connect("ABC")
    await settle()
    assert conn.set_connected() is True
    assert statuses == ["connecting", "pairing", "connected"]
    await conn.aclose()


@pytest.mark.asyncio
async def test_ordinary_close_schedules_reconnect(relay):
    conn, statuses, fatal = make_conn(relay)
    conn.connect("ABC")
    await settle()
    conn.set_connected()

    relay.last.drop(1006)
    await settle()
    assert conn.status == ConnectionState.DISCONNECTED
    assert conn.reconnect_pending
    assert conn.room == "ABC"

    await asyncio.sleep(DELAY * 2)
    await settle()
    assert len(relay.transports) == 2
    assert relay.transports[1].url == f"{RELAY}?room=ABC&role=player"
    assert statuses == ["connecting", "pairing", "connected", "disconnected", "connecting", "pairing"]
    assert fatal == []
    await conn.aclose()


@pytest.mark.asyncio
async def test_invalid_session_close_is_fatal(relay):
    conn, statuses, fatal = make_conn(relay)
    conn.connect("ABC")
    await settle()
    conn.set_connected()

    relay.last.drop(4001)
    await settle()

    assert conn.status == ConnectionState.DISCONNECTED
    assert conn.room is None
    assert not conn.reconnect_pending
    assert fatal == ["Invalid or expired session"]

    await asyncio.sleep(DELAY * 2)
    assert len(relay.attempts) == 1
    await conn.aclose()


@pytest.mark.asyncio
async def test_rejected_handshake_is_fatal(relay):
    conn, statuses, fatal = make_conn(relay)
    relay.failures.append(HandshakeRejected("relay rejected handshake: HTTP 400"))

    conn.connect("EXPIRED")
    await settle()

    assert statuses == ["connecting", "disconnected"]
    assert fatal == ["relay rejected handshake: HTTP 400"]
    assert conn.room is None
    assert not conn.reconnect_pending


@pytest.mark.asyncio
async def test_unreachable_relay_retries(relay):
    conn, statuses, fatal = make_conn(relay)
    relay.failures.append(ConnectionRefusedError("connection refused"))

    conn.connect("ABC")
    await settle()
    assert conn.status == ConnectionState.DISCONNECTED
    assert conn.reconnect_pending

    await asyncio.sleep(DELAY * 2)
    await settle()
    assert conn.status == ConnectionState.PAIRING
    assert len(relay.attempts) == 2
    assert fatal == []
    await conn.aclose()


@pytest.mark.asyncio
async def test_disconnect_stops_everything(relay):
    conn, statuses, _ = make_conn(relay)
    conn.connect("ABC")
    await settle()
    transport = relay.last

    conn.disconnect()
    assert conn.status == ConnectionState.DISCONNECTED
    assert conn.room is None
    await settle()
    assert transport.closed

    await asyncio.sleep(DELAY * 2)
    assert len(relay.attempts) == 1
    assert not conn.reconnect_pending


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(relay):
    conn, statuses, _ = make_conn(relay)
    conn.disconnect()
    assert statuses == []

    conn.connect("ABC")
    await settle()
    conn.disconnect()
    conn.disconnect()
    await settle()
    assert statuses == ["connecting", "pairing", "disconnected"]


@pytest.mark.asyncio
async def test_disconnect_cancels_pending_reconnect(relay):
    conn, _, _ = make_conn(relay)
    conn.connect("ABC")
    await settle()
    relay.last.drop()
    await settle()
    assert conn.reconnect_pending

    conn.disconnect()
    assert not conn.reconnect_pending
    await asyncio.sleep(DELAY * 2)
    assert len(relay.attempts) == 1


@pytest.mark.asyncio
async def test_disconnect_while_dialing_discards_socket(relay):
    conn, statuses, _ = make_conn(relay)
    conn.connect("ABC")
    conn.disconnect()
    await settle()

    assert relay.last.closed
    assert conn.status == ConnectionState.DISCONNECTED
    assert statuses == ["connecting", "disconnected"]


@pytest.mark.asyncio
async def test_connect_during_pending_reconnect_replaces_timer(relay):
    conn, _, _ = make_conn(relay)
    conn.connect("ABC")
    await settle()
    relay.last.drop()
    await settle()
    assert conn.reconnect_pending

    conn.connect("ABC")
    assert not conn.reconnect_pending
    await asyncio.sleep(DELAY * 2)
    await settle()
    assert len(relay.attempts) == 2
    await conn.aclose()


@pytest.mark.asyncio
async def test_transition_to_room_never_reports_disconnected(relay):
    conn, statuses, _ = make_conn(relay)
    conn.connect("TEMP")
    await settle()
    old = relay.last

    assert conn.transition_to_room("SESSION") is True
    await settle()

    assert old.closed
    assert conn.room == "SESSION"
    assert relay.last.url == f"{RELAY}?room=SESSION&role=player"
    assert statuses == ["connecting", "pairing", "connecting", "pairing"]

    # the old socket's close must not bring back the old room
    await asyncio.sleep(DELAY * 2)
    await settle()
    assert len(relay.attempts) == 2
    assert not conn.reconnect_pending
    await conn.aclose()


@pytest.mark.asyncio
async def test_transition_refused_when_disconnected(relay):
    conn, statuses, _ = make_conn(relay)
    assert conn.transition_to_room("SESSION") is False
    assert conn.room is None
    assert statuses == []


@pytest.mark.asyncio
async def test_self_echo_and_garbage_are_dropped(relay):
    identity = ClientIdentity("me")
    conn, statuses, _ = make_conn(relay, identity=identity)
    received = []
    conn.on_message(received.append)
    conn.connect("ABC")
    await settle()

    relay.last.deliver({"type": "toggle", "clientId": "me"})
    relay.last.deliver("{not json")
    relay.last.deliver({"no": "type"})
    relay.last.deliver({"type": "toggle", "clientId": "phone"})
    await settle()

    assert received == [{"type": "toggle", "clientId": "phone"}]
    assert conn.status == ConnectionState.PAIRING
    await conn.aclose()


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_reader(relay):
    conn, _, _ = make_conn(relay)
    received = []

    def broken(msg):
        raise RuntimeError("boom")

    conn.on_message(broken)
    conn.on_message(received.append)
    conn.connect("ABC")
    await settle()

    relay.last.deliver({"type": "mute"})
    relay.last.deliver({"type": "toggle"})
    await settle()
    assert [m["type"] for m in received] == ["mute", "toggle"]
    await conn.aclose()


@pytest.mark.asyncio
async def test_unsubscribe(relay):
    conn, _, _ = make_conn(relay)
    received = []
    unsubscribe = conn.on_message(received.append)
    unsubscribe()
    conn.connect("ABC")
    await settle()
    relay.last.deliver({"type": "toggle"})
    await settle()
    assert received == []
    await conn.aclose()


@pytest.mark.asyncio
async def test_keepalive_pings_while_open(relay):
    conn, _, _ = make_conn(relay, keepalive_interval=0.02)
    conn.connect("ABC")
    await settle()

    await asyncio.sleep(0.09)
    pings = relay.last.sent_types().count("ping")
    assert pings >= 2

    conn.disconnect()
    await settle()
    assert conn._keepalive_task is None


@pytest.mark.asyncio
async def test_keepalive_stops_on_close(relay):
    conn, _, _ = make_conn(relay, reconnect_delay=5, keepalive_interval=0.02)
    conn.connect("ABC")
    await settle()
    relay.last.drop()
    await settle()
    assert conn._keepalive_task is None
    await conn.aclose()


@pytest.mark.asyncio
async def test_send_without_socket_fails(relay):
    conn, _, _ = make_conn(relay)
    assert await conn.send({"type": "ack", "ok": True, "action": "toggled"}) is False


@pytest.mark.asyncio
async def test_send_stamps_client_id(relay):
    conn, _, _ = make_conn(relay, identity=ClientIdentity("player-1"))
    conn.connect("ABC")
    await settle()
    assert await conn.send({"type": "ack", "ok": False, "action": "muted"}) is True
    assert relay.last.sent[-1] == {"type": "ack", "ok": False, "action": "muted", "clientId": "player-1"}
    await conn.aclose()


@pytest.mark.asyncio
async def test_async_status_listener_is_scheduled(relay):
    conn = ConnectionManager(RELAY, transport_factory=relay)
    seen = []

    async def listener(status):
        seen.append(status)

    conn.on_status_change(listener)
    conn.connect("ABC")
    await settle()
    assert seen == ["connecting", "pairing"]
    await conn.aclose()


@pytest.mark.asyncio
async def test_disconnect_from_pairing_listener_leaves_no_keepalive(relay):
    conn = ConnectionManager(RELAY, transport_factory=relay, keepalive_interval=0.02)

    def hang_up(status):
        if status == ConnectionState.PAIRING:
            conn.disconnect()

    conn.on_status_change(hang_up)
    conn.connect("ABC")
    await settle()

    assert conn.status == ConnectionState.DISCONNECTED
    assert conn._keepalive_task is None
    assert relay.last.closed
    await asyncio.sleep(0.05)
    assert relay.last.sent_types() == []
    await conn.aclose()
