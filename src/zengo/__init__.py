"""ZenGo package exposing the rules, the peer session layer and the web application."""

from .game import GameState, GoMatch, MoveResult, attempt_move, initial_state
from .session import SessionManager
from .transport import MemoryBroker, WebSocketPeer

__all__ = [
    "GameState",
    "GoMatch",
    "MemoryBroker",
    "MoveResult",
    "SessionManager",
    "WebSocketPeer",
    "attempt_move",
    "initial_state",
]
