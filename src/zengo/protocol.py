"""Wire messages exchanged between two ZenGo peers.

Every message carries a full :class:`~zengo.game.GameState` snapshot. ``MOVE``
and ``SYNC`` snapshots are adopted verbatim by the receiver; they are checked
for shape only and never replayed through the rule engine. ``RESET`` is a bare
signal: its payload is not even decoded.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .game import BOARD_SIZE, HISTORY_LIMIT, GameState

MOVE = "MOVE"
SYNC = "SYNC"
RESET = "RESET"

MessageKind = Literal["MOVE", "SYNC", "RESET"]
StoneColor = Literal["black", "white"]


class ProtocolError(ValueError):
    """Raised when a peer frame cannot be interpreted."""


class LastMoveModel(BaseModel):
    r: int = Field(ge=0, lt=BOARD_SIZE)
    c: int = Field(ge=0, lt=BOARD_SIZE)


class CapturesModel(BaseModel):
    black: int = Field(ge=0)
    white: int = Field(ge=0)


class GameStateModel(BaseModel):
    """Structural schema of a transmitted game state."""

    model_config = ConfigDict(populate_by_name=True)

    board: List[List[Optional[StoneColor]]]
    current_turn: StoneColor = Field(alias="currentTurn")
    captures: CapturesModel
    history: List[str] = Field(default_factory=list, max_length=HISTORY_LIMIT + 1)
    game_over: bool = Field(default=False, alias="gameOver")
    winner: Optional[Literal["black", "white", "draw"]] = None
    last_move: Optional[LastMoveModel] = Field(default=None, alias="lastMove")

    @field_validator("board")
    @classmethod
    def ensure_square_board(
        cls, value: List[List[Optional[StoneColor]]]
    ) -> List[List[Optional[StoneColor]]]:
        if len(value) != BOARD_SIZE or any(len(row) != BOARD_SIZE for row in value):
            raise ValueError(f"Board must be {BOARD_SIZE}x{BOARD_SIZE}")
        return value

    def to_state(self) -> GameState:
        return GameState.from_dict(self.model_dump(by_alias=True))


class MessageHeader(BaseModel):
    type: MessageKind


class PeerMessage(BaseModel):
    type: MessageKind
    state: Optional[GameStateModel] = None


def encode_message(kind: str, state: GameState) -> Dict[str, Any]:
    return {"type": kind, "state": state.to_dict()}


def decode_message(data: Any) -> PeerMessage:
    """Parse a received frame, checking the message kind before the payload."""

    if not isinstance(data, dict):
        raise ProtocolError(f"Expected an object, got {type(data).__name__}")
    try:
        header = MessageHeader.model_validate({"type": data.get("type")})
    except ValidationError as exc:
        raise ProtocolError(f"Unknown message kind: {data.get('type')!r}") from exc

    if header.type == RESET:
        return PeerMessage(type=RESET)

    try:
        message = PeerMessage.model_validate(data)
    except ValidationError as exc:
        raise ProtocolError(f"Malformed {header.type} payload: {exc}") from exc
    if message.state is None:
        raise ProtocolError(f"{header.type} message without a state")
    return message
