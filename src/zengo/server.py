"""FastAPI app: local matches over HTTP and the peer discovery broker."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .advisor import StrategicAdvisor
from .config import load_settings
from .game import BOARD_SIZE, GoMatch

logger = logging.getLogger(__name__)


@dataclass
class GameSession:
    """Container for a local (single process, both colors) match."""

    match: GoMatch = field(default_factory=GoMatch)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


SESSIONS: Dict[str, GameSession] = {}
ADVISOR = StrategicAdvisor.from_settings(load_settings())
app = FastAPI(title="ZenGo", description="9x9 Go with peer-to-peer rooms")


class MoveRequest(BaseModel):
    """Request payload for placing a stone on a local match."""

    row: int = Field(ge=0, lt=BOARD_SIZE)
    col: int = Field(ge=0, lt=BOARD_SIZE)


def _create_session() -> Tuple[str, GameSession]:
    session = GameSession()
    session_id = uuid.uuid4().hex
    SESSIONS[session_id] = session
    return session_id, session


def _get_session(game_id: str) -> GameSession:
    try:
        return SESSIONS[game_id]
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Game not found") from exc


def _serialize_session(game_id: str, session: GameSession) -> Dict[str, object]:
    with session.lock:
        return {"id": game_id, "state": session.match.state.to_dict()}


@app.post("/api/game")
def create_game() -> Dict[str, object]:
    game_id, session = _create_session()
    return _serialize_session(game_id, session)


@app.get("/api/game/{game_id}")
def get_game(game_id: str) -> Dict[str, object]:
    session = _get_session(game_id)
    return _serialize_session(game_id, session)


@app.post("/api/game/{game_id}/move")
def make_move(game_id: str, request: MoveRequest) -> Dict[str, object]:
    session = _get_session(game_id)
    with session.lock:
        result = session.match.play(request.row, request.col)
    if not result.legal:
        raise HTTPException(status_code=400, detail=result.reason)
    return _serialize_session(game_id, session)


@app.post("/api/game/{game_id}/reset")
def reset_game(game_id: str) -> Dict[str, object]:
    session = _get_session(game_id)
    with session.lock:
        session.match.reset()
    return _serialize_session(game_id, session)


@app.post("/api/game/{game_id}/advice")
async def request_advice(game_id: str) -> Dict[str, str]:
    session = _get_session(game_id)
    with session.lock:
        state = session.match.state
    return {"advice": await ADVISOR.advise(state)}


# ---------- Discovery broker ----------


class SignalFrame(BaseModel):
    """Frame sent by a registered peer to the broker."""

    model_config = ConfigDict(populate_by_name=True)

    type: str
    dst: str
    connection_id: str = Field(alias="connectionId", min_length=1)
    payload: Any = None


@dataclass
class Link:
    """A relayed connection between an initiating peer and its target."""

    initiator: str
    target: str

    def other(self, peer_id: str) -> Optional[str]:
        if peer_id == self.initiator:
            return self.target
        if peer_id == self.target:
            return self.initiator
        return None


PEERS: Dict[str, WebSocket] = {}
LINKS: Dict[str, Link] = {}
PEER_LOCK = asyncio.Lock()


async def _send_to(peer_id: str, frame: Dict[str, Any]) -> bool:
    async with PEER_LOCK:
        websocket = PEERS.get(peer_id)
    if websocket is None:
        return False
    try:
        await websocket.send_json(frame)
    except (RuntimeError, WebSocketDisconnect):
        return False
    return True


def _error_frame(
    error_type: str, message: str, connection_id: Optional[str] = None
) -> Dict[str, Any]:
    frame: Dict[str, Any] = {"type": "error", "errorType": error_type, "message": message}
    if connection_id:
        frame["connectionId"] = connection_id
    return frame


async def _route_frame(peer_id: str, websocket: WebSocket, raw: Any) -> None:
    try:
        frame = SignalFrame.model_validate(raw)
    except ValidationError:
        await websocket.send_json(_error_frame("invalid-frame", "Malformed frame"))
        return

    cid = frame.connection_id
    if frame.type == "connect":
        async with PEER_LOCK:
            known = frame.dst in PEERS and frame.dst != peer_id
            if known:
                LINKS[cid] = Link(initiator=peer_id, target=frame.dst)
        if not known or not await _send_to(
            frame.dst, {"type": "connection", "src": peer_id, "connectionId": cid}
        ):
            async with PEER_LOCK:
                LINKS.pop(cid, None)
            await websocket.send_json(
                _error_frame(
                    "peer-unavailable", f"Could not connect to peer {frame.dst}", cid
                )
            )
        return

    async with PEER_LOCK:
        link = LINKS.get(cid)
        other = link.other(peer_id) if link else None
        if frame.type == "close" and other is not None:
            LINKS.pop(cid, None)
    if other is None or other != frame.dst:
        logger.debug("Dropping %s frame for unknown link %s", frame.type, cid)
        return

    if frame.type == "accept":
        await _send_to(other, {"type": "accept", "src": peer_id, "connectionId": cid})
    elif frame.type == "data":
        await _send_to(
            other,
            {"type": "data", "src": peer_id, "connectionId": cid, "payload": frame.payload},
        )
    elif frame.type == "close":
        await _send_to(other, {"type": "close", "src": peer_id, "connectionId": cid})
    else:
        await websocket.send_json(
            _error_frame("invalid-frame", f"Unknown frame type {frame.type!r}", cid)
        )


@app.get("/api/peer/{peer_id}")
async def inspect_peer(peer_id: str) -> Dict[str, object]:
    async with PEER_LOCK:
        registered = peer_id in PEERS
    return {"peerId": peer_id, "registered": registered}


@app.websocket("/ws/peer")
async def peer_signaling(
    websocket: WebSocket, requested_id: Optional[str] = Query(default=None, alias="id")
) -> None:
    await websocket.accept()
    peer_id = (requested_id or "").strip() or uuid.uuid4().hex

    async with PEER_LOCK:
        taken = peer_id in PEERS
        if not taken:
            PEERS[peer_id] = websocket

    if taken:
        await websocket.send_json(
            _error_frame("unavailable-id", f"ID {peer_id!r} is taken")
        )
        await websocket.close()
        return

    logger.info("Peer %s registered", peer_id)
    await websocket.send_json({"type": "open", "id": peer_id})

    try:
        while True:
            text = await websocket.receive_text()
            try:
                raw = json.loads(text)
            except ValueError:
                await websocket.send_json(_error_frame("invalid-frame", "Frame is not JSON"))
                continue
            await _route_frame(peer_id, websocket, raw)
    except WebSocketDisconnect:
        pass
    finally:
        orphaned: Dict[str, str] = {}
        async with PEER_LOCK:
            if PEERS.get(peer_id) is websocket:
                del PEERS[peer_id]
            for cid, link in list(LINKS.items()):
                other = link.other(peer_id)
                if other is not None:
                    orphaned[cid] = other
                    del LINKS[cid]
        for cid, other in orphaned.items():
            await _send_to(other, {"type": "close", "src": peer_id, "connectionId": cid})
        logger.info("Peer %s left", peer_id)
