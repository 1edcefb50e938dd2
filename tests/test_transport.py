"""Tests for the in-process broker and the WebSocket peer frame handling."""

import asyncio
from typing import Any, List, Optional

import pytest

from zengo.transport import MemoryBroker, PeerError, WebSocketPeer


class Recorder:
    """Listener collecting every transport callback."""

    def __init__(self, accept: bool = True) -> None:
        self.accept = accept
        self.incoming: List[Any] = []
        self.errors: List[PeerError] = []
        self.data: List[Any] = []
        self.lost: List[Any] = []

    def peer_connection(self, connection) -> None:
        self.incoming.append(connection)
        if self.accept:
            connection.attach(self)

    def peer_error(self, error: PeerError) -> None:
        self.errors.append(error)

    def data_received(self, connection, data) -> None:
        self.data.append(data)

    def connection_lost(self, connection) -> None:
        self.lost.append(connection)


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def test_memory_registration_collision():
    async def run_test():
        broker = MemoryBroker()
        first = broker.peer(Recorder())
        assert await first.open("zengo_v4_ABCD") == "zengo_v4_ABCD"
        second = broker.peer(Recorder())
        with pytest.raises(PeerError) as info:
            await second.open("zengo_v4_ABCD")
        assert info.value.type == "unavailable-id"
        first.destroy()
        assert not broker.is_registered("zengo_v4_ABCD")

    asyncio.run(run_test())


def test_memory_connect_to_unknown_peer():
    async def run_test():
        broker = MemoryBroker()
        peer = broker.peer(Recorder())
        await peer.open()
        with pytest.raises(PeerError) as info:
            await peer.connect("nobody", Recorder())
        assert info.value.type == "peer-unavailable"

    asyncio.run(run_test())


def test_memory_data_and_close_reach_the_other_side():
    async def run_test():
        broker = MemoryBroker()
        host_listener = Recorder()
        host = broker.peer(host_listener)
        await host.open("host")
        guest_listener = Recorder()
        guest = broker.peer(guest_listener)
        await guest.open()

        outbound = await guest.connect("host", guest_listener)
        assert len(host_listener.incoming) == 1
        inbound = host_listener.incoming[0]
        assert inbound.peer_id == guest.id

        payload = {"type": "SYNC", "state": {"n": 1}}
        inbound.send(payload)
        await _settle()
        assert guest_listener.data == [payload]
        assert guest_listener.data[0] is not payload

        outbound.close()
        await _settle()
        assert host_listener.lost == [inbound]
        assert guest_listener.lost == []
        assert not inbound.open

    asyncio.run(run_test())


def test_memory_destroy_closes_connections():
    async def run_test():
        broker = MemoryBroker()
        host_listener = Recorder()
        host = broker.peer(host_listener)
        await host.open("host")
        guest_listener = Recorder()
        guest = broker.peer(guest_listener)
        await guest.open()
        outbound = await guest.connect("host", guest_listener)

        host.destroy()
        await _settle()
        assert guest_listener.lost == [outbound]
        assert not broker.is_registered("host")

    asyncio.run(run_test())


def _registered_ws_peer(listener) -> WebSocketPeer:
    peer = WebSocketPeer("ws://broker.test/ws/peer", listener)
    peer.id = "local"
    peer._ws = object()
    peer._outbox = asyncio.Queue()
    return peer


def _drain(peer: WebSocketPeer) -> List[Optional[dict]]:
    frames = []
    while not peer._outbox.empty():
        frames.append(peer._outbox.get_nowait())
    return frames


def test_ws_peer_accepts_incoming_connection():
    async def run_test():
        listener = Recorder()
        peer = _registered_ws_peer(listener)
        peer._handle_frame({"type": "connection", "src": "remote", "connectionId": "c1"})
        assert _drain(peer) == [{"type": "accept", "dst": "remote", "connectionId": "c1"}]
        connection = listener.incoming[0]

        peer._handle_frame(
            {"type": "data", "src": "remote", "connectionId": "c1", "payload": {"x": 1}}
        )
        assert listener.data == [{"x": 1}]

        connection.send({"y": 2})
        assert _drain(peer) == [
            {"type": "data", "dst": "remote", "connectionId": "c1", "payload": {"y": 2}}
        ]

        peer._handle_frame({"type": "close", "src": "remote", "connectionId": "c1"})
        assert listener.lost == [connection]
        assert "c1" not in peer.connections

    asyncio.run(run_test())


def test_ws_peer_connect_resolves_on_accept():
    async def run_test():
        listener = Recorder()
        peer = _registered_ws_peer(Recorder())
        task = asyncio.create_task(peer.connect("zengo_v4_ABCD", listener))
        await asyncio.sleep(0)
        (frame,) = _drain(peer)
        assert frame["type"] == "connect"
        assert frame["dst"] == "zengo_v4_ABCD"

        peer._handle_frame(
            {"type": "accept", "src": "zengo_v4_ABCD", "connectionId": frame["connectionId"]}
        )
        connection = await task
        assert connection.open
        assert connection.listener is listener
        assert connection.peer_id == "zengo_v4_ABCD"

    asyncio.run(run_test())


def test_ws_peer_connect_fails_on_broker_error():
    async def run_test():
        peer = _registered_ws_peer(Recorder())
        task = asyncio.create_task(peer.connect("zengo_v4_NONE", Recorder()))
        await asyncio.sleep(0)
        (frame,) = _drain(peer)
        peer._handle_frame(
            {
                "type": "error",
                "errorType": "peer-unavailable",
                "message": "Could not connect",
                "connectionId": frame["connectionId"],
            }
        )
        with pytest.raises(PeerError) as info:
            await task
        assert info.value.type == "peer-unavailable"

    asyncio.run(run_test())


def test_ws_peer_reports_unsolicited_errors():
    async def run_test():
        listener = Recorder()
        peer = _registered_ws_peer(listener)
        peer._handle_frame({"type": "error", "errorType": "server-error", "message": "boom"})
        assert [error.type for error in listener.errors] == ["server-error"]

    asyncio.run(run_test())


def test_ws_peer_destroy_closes_connections_and_stops_writer():
    async def run_test():
        listener = Recorder()
        peer = _registered_ws_peer(listener)
        peer._handle_frame({"type": "connection", "src": "remote", "connectionId": "c1"})
        _drain(peer)

        peer.destroy()
        assert _drain(peer) == [
            {"type": "close", "dst": "remote", "connectionId": "c1"},
            None,
        ]
        assert peer.destroyed
        peer.destroy()
        assert _drain(peer) == []

    asyncio.run(run_test())
