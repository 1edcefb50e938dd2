"""WebSocket peers and sessions against a running discovery broker."""

import asyncio
import socket
import threading
import time

import pytest
import uvicorn

from zengo.game import BLACK, WHITE
from zengo.server import app
from zengo.session import (
    CONNECTED,
    DISCONNECTED,
    ERROR_HOST_LEFT,
    ERROR_JOINER_LEFT,
    WAITING,
    SessionManager,
)
from zengo.transport import PeerError, WebSocketPeer

PREFIX = "zengo_live_"


@pytest.fixture
def broker_url():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    server = uvicorn.Server(uvicorn.Config(app, log_level="warning", lifespan="off"))
    thread = threading.Thread(target=server.run, kwargs={"sockets": [sock]}, daemon=True)
    thread.start()

    deadline = time.monotonic() + 10
    while not server.started:
        if time.monotonic() > deadline:
            raise RuntimeError("broker did not start")
        time.sleep(0.01)

    yield f"ws://127.0.0.1:{port}/ws/peer"

    server.should_exit = True
    thread.join(timeout=10)
    sock.close()


class Recorder:
    def __init__(self) -> None:
        self.errors = []

    def peer_connection(self, connection) -> None:
        connection.attach(self)

    def peer_error(self, error: PeerError) -> None:
        self.errors.append(error)

    def data_received(self, connection, data) -> None:
        pass

    def connection_lost(self, connection) -> None:
        pass


async def _until(predicate, timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.02)


async def _stopped(peer: WebSocketPeer) -> None:
    await asyncio.wait_for(peer._writer, timeout=5)
    assert peer._session.closed


def test_open_registers_and_rejects_taken_ids(broker_url):
    async def run_test():
        first = WebSocketPeer(broker_url, Recorder())
        assert await first.open(PREFIX + "OPEN") == PREFIX + "OPEN"

        second = WebSocketPeer(broker_url, Recorder())
        with pytest.raises(PeerError) as info:
            await second.open(PREFIX + "OPEN")
        assert info.value.type == "unavailable-id"
        assert second._session.closed

        anonymous = WebSocketPeer(broker_url, Recorder())
        assigned = await anonymous.open()
        assert assigned and assigned != PREFIX + "OPEN"

        for peer in (first, anonymous):
            peer.destroy()
            await _stopped(peer)

    asyncio.run(run_test())


def test_destroy_during_open_releases_the_peer(broker_url):
    async def run_test():
        peer = WebSocketPeer(broker_url, Recorder())
        task = asyncio.create_task(peer.open(PREFIX + "RACE"))
        await asyncio.sleep(0)
        peer.destroy()
        with pytest.raises(PeerError) as info:
            await task
        assert info.value.type == "peer-destroyed"
        assert peer._session.closed

    asyncio.run(run_test())


def test_unreachable_broker_is_a_network_error():
    async def run_test():
        sock = socket.socket()
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
        sock.close()

        peer = WebSocketPeer(f"ws://127.0.0.1:{port}/ws/peer", Recorder())
        with pytest.raises(PeerError) as info:
            await peer.open()
        assert info.value.type == "network"
        assert peer._session.closed

    asyncio.run(run_test())


def test_lost_socket_reports_network_error_and_releases(broker_url):
    async def run_test():
        listener = Recorder()
        peer = WebSocketPeer(broker_url, listener)
        await peer.open(PREFIX + "LOST")

        await peer._ws.close()
        await _stopped(peer)
        assert [error.type for error in listener.errors] == ["network"]

    asyncio.run(run_test())


def test_write_failure_reports_error_and_releases(broker_url, monkeypatch):
    async def run_test():
        listener = Recorder()
        peer = WebSocketPeer(broker_url, listener)
        await peer.open(PREFIX + "WRITE")

        async def broken_send(frame):
            raise ConnectionResetError("socket gone")

        monkeypatch.setattr(peer._ws, "send_json", broken_send)
        peer._send_frame({"type": "connect", "dst": "nobody", "connectionId": "c1"})
        await _stopped(peer)
        assert [error.type for error in listener.errors] == ["network"]

        queued = peer._outbox.qsize()
        peer._send_frame({"type": "connect", "dst": "nobody", "connectionId": "c2"})
        assert peer._outbox.qsize() == queued

    asyncio.run(run_test())


def test_sessions_play_through_the_broker(broker_url):
    async def run_test():
        factory = WebSocketPeer.factory(broker_url)
        host = SessionManager(factory, peer_prefix=PREFIX)
        guest = SessionManager(factory, peer_prefix=PREFIX)
        intruder = SessionManager(factory, peer_prefix=PREFIX)

        code = await host.host_game()
        assert code is not None
        assert await guest.join_game(code.lower())
        await _until(lambda: host.status == CONNECTED)
        assert guest.status == CONNECTED
        assert (host.color, guest.color) == (BLACK, WHITE)

        await intruder.join_game(code)
        await _until(lambda: intruder.status == DISCONNECTED)
        assert intruder.last_error == ERROR_HOST_LEFT
        assert host.status == CONNECTED

        assert host.place_stone(4, 4).legal
        await _until(lambda: guest.state.board[4][4] == BLACK)
        assert guest.state.current_turn == WHITE

        guest.leave()
        await _until(lambda: host.status == WAITING)
        assert host.last_error == ERROR_JOINER_LEFT
        assert host.room_code == code

        host.leave()
        await asyncio.sleep(0.1)

    asyncio.run(run_test())
