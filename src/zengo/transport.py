"""Peer discovery transports used by the session layer.

A :class:`Peer` is an endpoint registered on a discovery broker under an id.
Other peers open a :class:`Connection` to it by that id. All notifications are
delivered on the running event loop through listener callbacks, named after
``asyncio.Protocol``: ``peer_connection``/``peer_error`` for the endpoint and
``data_received``/``connection_lost`` for a connection.

Two implementations exist: :class:`MemoryBroker` keeps everything inside one
process, :class:`WebSocketPeer` talks to the ``/ws/peer`` broker in
:mod:`zengo.server`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import aiohttp

logger = logging.getLogger(__name__)


class PeerError(Exception):
    """Transport failure. ``type`` mirrors the broker's error codes."""

    def __init__(self, type: str, message: str = "") -> None:
        super().__init__(message or type)
        self.type = type


class PeerListener(Protocol):
    def peer_connection(self, connection: "Connection") -> None: ...

    def peer_error(self, error: PeerError) -> None: ...


class ConnectionListener(Protocol):
    def data_received(self, connection: "Connection", data: Any) -> None: ...

    def connection_lost(self, connection: "Connection") -> None: ...


class Connection(ABC):
    """A link between the local peer and one remote peer."""

    def __init__(self, owner: "Peer", peer_id: str, connection_id: str) -> None:
        self.owner = owner
        self.peer_id = peer_id
        self.connection_id = connection_id
        self.open = True
        self.listener: Optional[ConnectionListener] = None

    def attach(self, listener: ConnectionListener) -> None:
        self.listener = listener

    @abstractmethod
    def send(self, data: Any) -> None:
        """Queue ``data`` for the remote side; never waits for delivery."""

    @abstractmethod
    def close(self) -> None:
        """Close the link. Only the remote side is notified."""

    def _deliver(self, data: Any) -> None:
        if not self.open:
            return
        if self.listener is None:
            logger.debug("Dropping data on unattached connection %s", self.connection_id)
            return
        self.listener.data_received(self, data)

    def _lost(self) -> None:
        if not self.open:
            return
        self.open = False
        self.owner.connections.pop(self.connection_id, None)
        if self.listener is not None:
            self.listener.connection_lost(self)


class Peer(ABC):
    def __init__(self, listener: PeerListener) -> None:
        self.listener = listener
        self.id: Optional[str] = None
        self.destroyed = False
        self.connections: Dict[str, Connection] = {}

    @abstractmethod
    async def open(self, peer_id: Optional[str] = None) -> str:
        """Register on the broker. Raises ``PeerError('unavailable-id')`` on collision."""

    @abstractmethod
    async def connect(self, peer_id: str, listener: ConnectionListener) -> Connection:
        """Open a connection to ``peer_id``; resolves once the remote side has it."""

    @abstractmethod
    def destroy(self) -> None:
        """Close every connection and release the registration."""


PeerFactory = Callable[[PeerListener], Peer]


# ---------- In-process broker ----------


class MemoryConnection(Connection):
    remote: "MemoryConnection"

    def send(self, data: Any) -> None:
        if not self.open:
            logger.warning("Cannot send on closed connection to %s", self.peer_id)
            return
        # Round-trip through JSON so both sides never share objects.
        payload = json.loads(json.dumps(data))
        asyncio.get_running_loop().call_soon(self.remote._deliver, payload)

    def close(self) -> None:
        if not self.open:
            return
        self.open = False
        self.owner.connections.pop(self.connection_id, None)
        asyncio.get_running_loop().call_soon(self.remote._lost)


class MemoryPeer(Peer):
    def __init__(self, broker: "MemoryBroker", listener: PeerListener) -> None:
        super().__init__(listener)
        self.broker = broker

    async def open(self, peer_id: Optional[str] = None) -> str:
        await asyncio.sleep(0)
        if self.destroyed:
            raise PeerError("peer-destroyed", "Peer was destroyed before registering")
        peer_id = peer_id or uuid.uuid4().hex
        if peer_id in self.broker.peers:
            raise PeerError("unavailable-id", f"ID {peer_id!r} is taken")
        self.broker.peers[peer_id] = self
        self.id = peer_id
        return peer_id

    async def connect(self, peer_id: str, listener: ConnectionListener) -> Connection:
        await asyncio.sleep(0)
        if self.id is None or self.destroyed:
            raise PeerError("disconnected", "Peer is not registered")
        target = self.broker.peers.get(peer_id)
        if target is None:
            raise PeerError("peer-unavailable", f"Could not connect to peer {peer_id}")

        connection_id = uuid.uuid4().hex
        local = MemoryConnection(self, peer_id, connection_id)
        remote = MemoryConnection(target, self.id, connection_id)
        local.remote, remote.remote = remote, local
        local.attach(listener)
        self.connections[connection_id] = local
        target.connections[connection_id] = remote
        target.listener.peer_connection(remote)
        return local

    def destroy(self) -> None:
        if self.destroyed:
            return
        self.destroyed = True
        for connection in list(self.connections.values()):
            connection.close()
        self.connections.clear()
        if self.id is not None and self.broker.peers.get(self.id) is self:
            del self.broker.peers[self.id]


class MemoryBroker:
    """Registry of in-process peers; ``broker.peer`` works as a peer factory."""

    def __init__(self) -> None:
        self.peers: Dict[str, MemoryPeer] = {}

    def peer(self, listener: PeerListener) -> MemoryPeer:
        return MemoryPeer(self, listener)

    def is_registered(self, peer_id: str) -> bool:
        return peer_id in self.peers


# ---------- WebSocket broker client ----------


class WebSocketConnection(Connection):
    owner: "WebSocketPeer"

    def send(self, data: Any) -> None:
        if not self.open:
            logger.warning("Cannot send on closed connection to %s", self.peer_id)
            return
        self.owner._send_frame(
            {
                "type": "data",
                "dst": self.peer_id,
                "connectionId": self.connection_id,
                "payload": data,
            }
        )

    def close(self) -> None:
        if not self.open:
            return
        self.open = False
        self.owner.connections.pop(self.connection_id, None)
        self.owner._send_frame(
            {"type": "close", "dst": self.peer_id, "connectionId": self.connection_id}
        )


class WebSocketPeer(Peer):
    """Peer registered on the ZenGo discovery broker over a WebSocket."""

    def __init__(
        self,
        url: str,
        listener: PeerListener,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(listener)
        self.url = url
        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._outbox: Optional[asyncio.Queue] = None
        self._reader: Optional[asyncio.Task] = None
        self._writer: Optional[asyncio.Task] = None
        self._failed = False
        self._pending: Dict[
            str, Tuple[asyncio.Future, str, ConnectionListener]
        ] = {}

    @classmethod
    def factory(cls, url: str) -> PeerFactory:
        def build(listener: PeerListener) -> "WebSocketPeer":
            return cls(url, listener)

        return build

    async def open(self, peer_id: Optional[str] = None) -> str:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        params = {"id": peer_id} if peer_id else None
        try:
            self._ws = await self._session.ws_connect(self.url, params=params)
            frame = await self._ws.receive_json()
        except (aiohttp.ClientError, OSError, TypeError, ValueError) as exc:
            await self._release()
            raise PeerError("network", f"Could not reach {self.url}: {exc}") from exc

        if frame.get("type") != "open":
            await self._release()
            if frame.get("type") == "error":
                raise PeerError(
                    frame.get("errorType", "server-error"), frame.get("message", "")
                )
            raise PeerError("server-error", f"Unexpected handshake frame {frame!r}")
        if self.destroyed:
            await self._release()
            raise PeerError("peer-destroyed", "Peer was destroyed before registering")

        self.id = frame["id"]
        self._outbox = asyncio.Queue()
        self._reader = asyncio.create_task(self._read_loop())
        self._writer = asyncio.create_task(self._write_loop())
        logger.debug("Registered %s on %s", self.id, self.url)
        return self.id

    async def connect(self, peer_id: str, listener: ConnectionListener) -> Connection:
        if self._ws is None or self._outbox is None or self.destroyed:
            raise PeerError("disconnected", "Peer is not registered")
        connection_id = uuid.uuid4().hex
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[connection_id] = (future, peer_id, listener)
        self._send_frame(
            {"type": "connect", "dst": peer_id, "connectionId": connection_id}
        )
        try:
            return await future
        finally:
            self._pending.pop(connection_id, None)

    def destroy(self) -> None:
        if self.destroyed:
            return
        for connection in list(self.connections.values()):
            connection.close()
        self.destroyed = True
        for future, _, _ in self._pending.values():
            if not future.done():
                future.set_exception(PeerError("peer-destroyed", "Peer was destroyed"))
        if self._outbox is not None:
            self._outbox.put_nowait(None)

    # ---- internals ----

    def _send_frame(self, frame: Dict[str, Any]) -> None:
        if self._outbox is None or self.destroyed or self._failed:
            return
        self._outbox.put_nowait(frame)

    async def _write_loop(self) -> None:
        assert self._ws is not None and self._outbox is not None
        try:
            while True:
                frame = await self._outbox.get()
                if frame is None:
                    break
                await self._ws.send_json(frame)
        except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as exc:
            logger.warning("Failed to write to discovery server: %s", exc)
            self._fail(PeerError("network", f"Lost connection to the discovery server: {exc}"))
        finally:
            await self._release()

    async def _read_loop(self) -> None:
        assert self._ws is not None
        try:
            async for message in self._ws:
                if message.type == aiohttp.WSMsgType.ERROR:
                    break
                if message.type != aiohttp.WSMsgType.TEXT:
                    continue
                try:
                    frame = json.loads(message.data)
                except ValueError:
                    logger.warning("Ignoring non-JSON frame from discovery server")
                    continue
                if not isinstance(frame, dict):
                    continue
                try:
                    self._handle_frame(frame)
                except Exception:
                    logger.exception("Failed to handle %s frame", frame.get("type"))
        except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as exc:
            logger.warning("Failed to read from discovery server: %s", exc)
        finally:
            self._fail(PeerError("network", "Lost connection to the discovery server"))

    def _handle_frame(self, frame: Dict[str, Any]) -> None:
        kind = frame.get("type")
        connection_id = frame.get("connectionId")
        pending = self._pending.get(connection_id) if connection_id else None

        if kind == "connection":
            connection = WebSocketConnection(self, frame["src"], connection_id)
            self.connections[connection_id] = connection
            self._send_frame(
                {"type": "accept", "dst": connection.peer_id, "connectionId": connection_id}
            )
            self.listener.peer_connection(connection)
        elif kind == "accept":
            if pending is None or pending[0].done():
                return
            future, peer_id, listener = pending
            connection = WebSocketConnection(self, peer_id, connection_id)
            connection.attach(listener)
            self.connections[connection_id] = connection
            future.set_result(connection)
        elif kind == "data":
            connection = self.connections.get(connection_id)
            if connection is not None:
                connection._deliver(frame.get("payload"))
        elif kind == "close":
            connection = self.connections.get(connection_id)
            if connection is not None:
                connection._lost()
            elif pending is not None and not pending[0].done():
                pending[0].set_exception(
                    PeerError("peer-unavailable", "Remote peer closed the connection")
                )
        elif kind == "error":
            error = PeerError(
                frame.get("errorType", "server-error"), frame.get("message", "")
            )
            if pending is not None and not pending[0].done():
                pending[0].set_exception(error)
            else:
                self.listener.peer_error(error)
        else:
            logger.debug("Ignoring unknown frame type %r", kind)

    def _fail(self, error: PeerError) -> None:
        if self.destroyed or self._failed:
            return
        self._failed = True
        for connection in list(self.connections.values()):
            connection._lost()
        for future, _, _ in self._pending.values():
            if not future.done():
                future.set_exception(error)
        # Stops the writer, which releases the socket and the client session.
        if self._outbox is not None:
            self._outbox.put_nowait(None)
        self.listener.peer_error(error)

    async def _release(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
