"""Core rules for ZenGo: 9x9 Go with captures, suicide and simple-ko checks."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

Color = str  # "black" or "white"
Cell = Optional[Color]
Point = Tuple[int, int]
Board = Tuple[Tuple[Cell, ...], ...]

BLACK: Color = "black"
WHITE: Color = "white"
COLORS: Tuple[Color, Color] = (BLACK, WHITE)

BOARD_SIZE = 9
# Digests kept besides the newest one.
HISTORY_LIMIT = 10

# Up, down, left, right.
NEIGHBOR_OFFSETS: Tuple[Point, ...] = ((-1, 0), (1, 0), (0, -1), (0, 1))

REASON_GAME_OVER = "game already concluded"
REASON_OFF_BOARD = "cell off board"
REASON_OCCUPIED = "cell occupied"
REASON_SUICIDE = "suicide move prohibited"
REASON_REPETITION = "repetition rule violation"


def opponent(color: Color) -> Color:
    return WHITE if color == BLACK else BLACK


def empty_board() -> Board:
    return tuple(tuple(None for _ in range(BOARD_SIZE)) for _ in range(BOARD_SIZE))


def on_board(row: int, col: int) -> bool:
    return 0 <= row < BOARD_SIZE and 0 <= col < BOARD_SIZE


def neighbors(row: int, col: int) -> List[Point]:
    """Orthogonal neighbours of a point that lie on the board, in fixed order."""
    out: List[Point] = []
    for dr, dc in NEIGHBOR_OFFSETS:
        nr, nc = row + dr, col + dc
        if on_board(nr, nc):
            out.append((nr, nc))
    return out


# ---------- Game state ----------


@dataclass(frozen=True)
class GameState:
    """Snapshot of a match. Every accepted move produces a new instance."""

    board: Board = field(default_factory=empty_board)
    current_turn: Color = BLACK
    captures: Mapping[Color, int] = field(
        default_factory=lambda: {BLACK: 0, WHITE: 0}
    )
    history: Tuple[str, ...] = ()
    game_over: bool = False
    winner: Optional[str] = None
    last_move: Optional[Point] = None

    def __post_init__(self) -> None:
        # Stored as a read-only view.
        object.__setattr__(self, "captures", MappingProxyType(dict(self.captures)))

    def cell(self, row: int, col: int) -> Cell:
        return self.board[row][col]

    def to_dict(self) -> Dict[str, object]:
        """Wire/JSON form shared by the HTTP API and the peer protocol."""
        return {
            "board": [list(row) for row in self.board],
            "currentTurn": self.current_turn,
            "captures": {BLACK: self.captures[BLACK], WHITE: self.captures[WHITE]},
            "history": list(self.history),
            "gameOver": self.game_over,
            "winner": self.winner,
            "lastMove": (
                {"r": self.last_move[0], "c": self.last_move[1]}
                if self.last_move is not None
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "GameState":
        last = data.get("lastMove")
        return cls(
            board=tuple(tuple(row) for row in data["board"]),  # type: ignore[union-attr]
            current_turn=data["currentTurn"],  # type: ignore[arg-type]
            captures={
                BLACK: int(data["captures"][BLACK]),  # type: ignore[index]
                WHITE: int(data["captures"][WHITE]),  # type: ignore[index]
            },
            history=tuple(data.get("history") or ()),  # type: ignore[arg-type]
            game_over=bool(data.get("gameOver", False)),
            winner=data.get("winner"),  # type: ignore[arg-type]
            last_move=(last["r"], last["c"]) if last else None,  # type: ignore[index]
        )


def initial_state() -> GameState:
    """Empty board, black to move, no captures, empty history."""
    return GameState()


def board_digest(board: Sequence[Sequence[Cell]]) -> str:
    """Content-derived digest of a board configuration."""
    encoded = json.dumps([list(row) for row in board], separators=(",", ":"))
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()


# ---------- Rule engine ----------


def group_and_liberties(
    origin: Point, board: Sequence[Sequence[Cell]]
) -> Tuple[List[Point], Set[Point]]:
    """Return the group containing ``origin`` and the group's liberties.

    Depth-first over same-colored stones with a visited set, so each point is
    expanded once. An empty origin has no group and no liberties.
    """
    row, col = origin
    color = board[row][col]
    if color is None:
        return [], set()

    group: List[Point] = []
    liberties: Set[Point] = set()
    visited: Set[Point] = {origin}
    stack: List[Point] = [origin]
    while stack:
        r, c = stack.pop()
        group.append((r, c))
        # Reverse so the first neighbour (up) is expanded first.
        for nr, nc in reversed(neighbors(r, c)):
            value = board[nr][nc]
            if value is None:
                liberties.add((nr, nc))
            elif value == color and (nr, nc) not in visited:
                visited.add((nr, nc))
                stack.append((nr, nc))
    return group, liberties


@dataclass(frozen=True)
class MoveResult:
    legal: bool
    reason: Optional[str] = None
    next_state: Optional[GameState] = None
    captured: int = 0


def attempt_move(row: int, col: int, state: GameState) -> MoveResult:
    """Validate a stone for ``state.current_turn`` at (row, col).

    Checks run in a fixed order: finished game, bounds, occupancy, then
    captures are resolved before the suicide and repetition checks.
    """
    if state.game_over:
        return MoveResult(False, REASON_GAME_OVER)
    if not on_board(row, col):
        return MoveResult(False, REASON_OFF_BOARD)
    if state.board[row][col] is not None:
        return MoveResult(False, REASON_OCCUPIED)

    color = state.current_turn
    enemy = opponent(color)
    working: List[List[Cell]] = [list(r) for r in state.board]
    working[row][col] = color

    captured = 0
    for nr, nc in neighbors(row, col):
        if working[nr][nc] != enemy:
            continue
        group, liberties = group_and_liberties((nr, nc), working)
        if liberties:
            continue
        captured += len(group)
        for gr, gc in group:
            working[gr][gc] = None

    _, own_liberties = group_and_liberties((row, col), working)
    if not own_liberties:
        return MoveResult(False, REASON_SUICIDE)

    # Simple ko: the current position and the one before the last move.
    # Older entries are not consulted.
    digest = board_digest(working)
    if digest in state.history[-2:]:
        return MoveResult(False, REASON_REPETITION)

    captures = dict(state.captures)
    captures[color] = captures[color] + captured
    next_state = replace(
        state,
        board=tuple(tuple(r) for r in working),
        current_turn=enemy,
        captures=captures,
        history=state.history[-HISTORY_LIMIT:] + (digest,),
        last_move=(row, col),
    )
    return MoveResult(True, next_state=next_state, captured=captured)


def render_board(board: Sequence[Sequence[Cell]]) -> str:
    """Rows of ``B``/``W``/``.`` markers separated by spaces."""
    markers = {BLACK: "B", WHITE: "W", None: "."}
    return "\n".join(" ".join(markers[cell] for cell in row) for row in board)


# ---------- Game ----------


class GoMatch:
    """Holds the current state of one match and applies moves to it."""

    def __init__(self, state: Optional[GameState] = None) -> None:
        self.state = state if state is not None else initial_state()

    def play(self, row: int, col: int) -> MoveResult:
        result = attempt_move(row, col, self.state)
        if result.legal and result.next_state is not None:
            self.state = result.next_state
        return result

    def adopt(self, state: GameState) -> None:
        """Replace the held state verbatim (no rule validation)."""
        self.state = state

    def reset(self) -> GameState:
        self.state = initial_state()
        return self.state
