"""Peer-to-peer session lifecycle and snapshot replication.

The :class:`SessionManager` owns the discovery peer and at most one peer
connection. The host always plays black and the joiner white. Every local
change is pushed to the other side as a full state snapshot and every received
snapshot is adopted as-is, so the two processes converge on whichever state
was sent last.
"""

from __future__ import annotations

import logging
import random
import string
from typing import Any, Callable, Optional

from .config import DEFAULT_PEER_PREFIX
from .game import (
    BLACK,
    WHITE,
    Color,
    GameState,
    GoMatch,
    MoveResult,
    attempt_move,
)
from .protocol import MOVE, RESET, SYNC, ProtocolError, decode_message, encode_message
from .transport import Connection, Peer, PeerError, PeerFactory

logger = logging.getLogger(__name__)

DISCONNECTED = "disconnected"
CONNECTING = "connecting"
WAITING = "waiting"
CONNECTED = "connected"

ROOM_CODE_LENGTH = 4
ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits

REASON_NOT_CONNECTED = "waiting for opponent"
REASON_NOT_YOUR_TURN = "not your turn"

ERROR_ROOM_TAKEN = "Room code already in use. Try again."
ERROR_EMPTY_CODE = "Enter a room code to join."
ERROR_JOINER_LEFT = "Opponent disconnected. Waiting for a new opponent."
ERROR_HOST_LEFT = "Opponent disconnected."


def generate_room_code() -> str:
    return "".join(random.choices(ROOM_CODE_ALPHABET, k=ROOM_CODE_LENGTH))


def normalize_room_code(code: str) -> str:
    return code.strip().upper()


class SessionManager:
    """Host/join state machine: disconnected, connecting, waiting, connected.

    Handlers are invoked by the transport on the event loop. Only
    :meth:`host_game` and :meth:`join_game` suspend; nothing here times out,
    so a pending attempt lasts until :meth:`leave`.
    """

    def __init__(
        self,
        peer_factory: PeerFactory,
        *,
        peer_prefix: str = DEFAULT_PEER_PREFIX,
        on_change: Optional[Callable[["SessionManager"], None]] = None,
    ) -> None:
        self.match = GoMatch()
        self.status = DISCONNECTED
        self.room_code: Optional[str] = None
        self.color: Color = BLACK
        self.last_error: Optional[str] = None
        self.peer_prefix = peer_prefix
        self.on_change = on_change
        self._peer_factory = peer_factory
        self._peer: Optional[Peer] = None
        self._conn: Optional[Connection] = None
        self._hosting = False

    async def __aenter__(self) -> "SessionManager":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.leave()

    @property
    def state(self) -> GameState:
        return self.match.state

    @property
    def is_host(self) -> bool:
        return self._hosting

    @property
    def peer_id(self) -> Optional[str]:
        return self._peer.id if self._peer is not None else None

    # ---- lifecycle ----

    async def host_game(self) -> Optional[str]:
        """Open a room and wait for one opponent. Returns the room code."""
        self.leave()
        code = generate_room_code()
        peer = self._peer_factory(self)
        self._peer = peer
        self._hosting = True
        self.status = WAITING
        self.room_code = code
        self.color = BLACK
        self._changed()

        try:
            await peer.open(self.peer_prefix + code)
        except PeerError as exc:
            if self._peer is not peer:
                return None
            logger.warning("Could not host room %s: %s", code, exc)
            self._teardown()
            if exc.type == "unavailable-id":
                self.last_error = ERROR_ROOM_TAKEN
            else:
                self.last_error = f"Connection error: {exc.type}"
            self._changed()
            return None

        if self._peer is not peer:
            peer.destroy()
            return None
        logger.info("Hosting room %s as %s", code, peer.id)
        return code

    async def join_game(self, code: str) -> bool:
        normalized = normalize_room_code(code or "")
        if not normalized:
            self.last_error = ERROR_EMPTY_CODE
            self._changed()
            return False

        self.leave()
        peer = self._peer_factory(self)
        self._peer = peer
        self._hosting = False
        self.status = CONNECTING
        self.color = WHITE
        self._changed()

        try:
            await peer.open()
            connection = await peer.connect(self.peer_prefix + normalized, self)
        except PeerError as exc:
            if self._peer is not peer:
                return False
            logger.warning("Could not join room %s: %s", normalized, exc)
            self._teardown()
            self.last_error = f"Could not join room. Error: {exc.type}"
            self._changed()
            return False

        if self._peer is not peer:
            # Left while the connection was being opened.
            connection.close()
            peer.destroy()
            return False
        if not connection.open:
            self._teardown()
            self.last_error = ERROR_HOST_LEFT
            self._changed()
            return False

        self._conn = connection
        self.status = CONNECTED
        self.room_code = normalized
        self.last_error = None
        logger.info("Joined room %s", normalized)
        self._changed()
        return True

    def leave(self) -> None:
        self._teardown()
        self._changed()

    # ---- game actions ----

    def send_move(self, next_state: GameState) -> None:
        """Adopt ``next_state`` locally, then push it to the peer if connected."""
        self.match.adopt(next_state)
        self._send(MOVE, next_state)
        self._changed()

    def reset_game(self) -> GameState:
        fresh = self.match.reset()
        self._send(RESET, fresh)
        self._changed()
        return fresh

    def place_stone(self, row: int, col: int, online: bool = True) -> MoveResult:
        """Play a stone for the local side.

        Online, a stone is only accepted once connected and on the local
        color's turn. Offline, both colors play here and nothing is sent.
        """
        if not online:
            result = self.match.play(row, col)
            if result.legal:
                self._changed()
            return result

        if self.status != DISCONNECTED:
            if self.status != CONNECTED:
                return MoveResult(False, REASON_NOT_CONNECTED)
            if self.match.state.current_turn != self.color:
                return MoveResult(False, REASON_NOT_YOUR_TURN)
        result = attempt_move(row, col, self.match.state)
        if result.legal and result.next_state is not None:
            self.send_move(result.next_state)
        return result

    # ---- transport callbacks ----

    def peer_connection(self, connection: Connection) -> None:
        if self._peer is None or connection.owner is not self._peer:
            connection.close()
            return
        if self._conn is not None:
            logger.info("Rejecting second connection from %s", connection.peer_id)
            connection.close()
            return

        connection.attach(self)
        self._conn = connection
        self.status = CONNECTED
        self.last_error = None
        logger.info("Opponent %s joined room %s", connection.peer_id, self.room_code)
        connection.send(encode_message(SYNC, self.match.state))
        self._changed()

    def peer_error(self, error: PeerError) -> None:
        if self._peer is None:
            return
        logger.warning("Transport error: %s", error)
        self._teardown()
        self.last_error = f"Connection error: {error.type}"
        self._changed()

    def data_received(self, connection: Connection, data: Any) -> None:
        if self._peer is None or connection.owner is not self._peer:
            return
        try:
            message = decode_message(data)
        except ProtocolError as exc:
            logger.warning("Dropping frame from %s: %s", connection.peer_id, exc)
            return

        if message.type == RESET:
            self.match.reset()
        elif message.state is not None:
            # Received snapshots are trusted; no rule re-validation.
            self.match.adopt(message.state.to_state())
        logger.debug("Applied %s from %s", message.type, connection.peer_id)
        self._changed()

    def connection_lost(self, connection: Connection) -> None:
        if self._peer is None or connection.owner is not self._peer:
            return
        if self._hosting:
            if connection is not self._conn:
                return
            self._conn = None
            self.status = WAITING
            self.last_error = ERROR_JOINER_LEFT
        else:
            self._teardown()
            self.last_error = ERROR_HOST_LEFT
        logger.info("Peer %s disconnected", connection.peer_id)
        self._changed()

    # ---- helpers ----

    def _send(self, kind: str, state: GameState) -> None:
        if self.status != CONNECTED or self._conn is None or not self._conn.open:
            return
        self._conn.send(encode_message(kind, state))

    def _teardown(self) -> None:
        connection, peer = self._conn, self._peer
        self._conn = None
        self._peer = None
        if connection is not None:
            connection.close()
        if peer is not None:
            peer.destroy()
        self._hosting = False
        self.status = DISCONNECTED
        self.room_code = None
        self.last_error = None

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self)
