"""Terminal client: play locally or against a friend through a room code."""

from __future__ import annotations

import asyncio
from typing import Callable, List

from .advisor import StrategicAdvisor
from .config import Settings
from .game import BLACK, BOARD_SIZE, WHITE, render_board
from .session import SessionManager
from .transport import WebSocketPeer

HELP = """Commands:
  host              open a room and wait for a friend (you play black)
  join CODE         join a friend's room (you play white)
  leave             leave the current room
  online | offline  toggle between networked and local play
  ROW COL           place a stone (also: play ROW COL), 0-based
  reset             start a new match (sent to your friend when connected)
  advice            ask the master for a hint
  board | status    show the board / the session
  quit              leave and exit"""


def describe(session: SessionManager, online: bool) -> str:
    state = session.state
    header = "   " + " ".join(str(c) for c in range(BOARD_SIZE))
    rows = render_board(state.board).splitlines()
    lines: List[str] = [header]
    lines.extend(f"{r:>2} {row}" for r, row in enumerate(rows))
    lines.append(
        f"Turn: {state.current_turn}  "
        f"Captures black={state.captures[BLACK]} white={state.captures[WHITE]}"
    )
    lines.append(status_line(session, online))
    return "\n".join(lines)


def status_line(session: SessionManager, online: bool) -> str:
    if not online:
        line = "Mode: offline"
    else:
        line = f"Mode: online  Status: {session.status}  You: {session.color}"
        if session.room_code:
            line += f"  Room: {session.room_code}"
    if session.last_error:
        line += f"\nError: {session.last_error}"
    return line


class Console:
    """Dispatches text commands to a :class:`SessionManager`."""

    def __init__(
        self,
        session: SessionManager,
        advisor: StrategicAdvisor,
        write: Callable[[str], None] = print,
    ) -> None:
        self.session = session
        self.advisor = advisor
        self.write = write
        self.online = True
        session.on_change = self._on_change
        self._last_render = ""

    async def handle(self, line: str) -> bool:
        """Run one command. Returns ``False`` when the console should exit."""
        parts = line.split()
        if not parts:
            return True
        command, args = parts[0].lower(), parts[1:]
        if command.isdigit():
            command, args = "play", parts

        if command in ("quit", "exit"):
            self.session.leave()
            return False
        if command == "help":
            self.write(HELP)
        elif command == "host":
            code = await self.session.host_game()
            if code:
                self.write(f"Room code: {code} (share it with your friend)")
        elif command == "join":
            if await self.session.join_game(args[0] if args else ""):
                self.write(f"Joined room {self.session.room_code}")
        elif command == "leave":
            self.session.leave()
        elif command in ("online", "offline"):
            self.online = command == "online"
            self.write(status_line(self.session, self.online))
        elif command == "play":
            self._play(args)
        elif command == "reset":
            self.session.reset_game()
        elif command == "advice":
            self.write(await self.advisor.advise(self.session.state))
        elif command == "board":
            self.write(describe(self.session, self.online))
        elif command == "status":
            self.write(status_line(self.session, self.online))
        else:
            self.write(f"Unknown command {command!r}; type 'help'")
        return True

    def _play(self, args: List[str]) -> None:
        try:
            row, col = (int(value) for value in args)
        except ValueError:
            self.write("Usage: play ROW COL")
            return
        result = self.session.place_stone(row, col, online=self.online)
        if not result.legal:
            self.write(f"Illegal move: {result.reason}")

    def _on_change(self, session: SessionManager) -> None:
        rendered = describe(session, self.online)
        if rendered != self._last_render:
            self._last_render = rendered
            self.write(rendered)


async def run_console(settings: Settings, signal_url: str) -> None:
    session = SessionManager(
        WebSocketPeer.factory(signal_url), peer_prefix=settings.peer_prefix
    )
    console = Console(session, StrategicAdvisor.from_settings(settings))
    console.write(HELP)
    async with session:
        while True:
            try:
                line = await asyncio.to_thread(input, "zengo> ")
            except EOFError:
                break
            if not await console.handle(line):
                break
