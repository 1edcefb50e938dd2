"""Entry point for running ZenGo via ``python -m zengo``."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List, Optional

import uvicorn

from .cli import run_console
from .config import load_settings


def main(argv: Optional[List[str]] = None) -> None:
    """Start the broker/API server (default) or the terminal client."""

    parser = argparse.ArgumentParser(prog="zengo")
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("serve", help="run the HTTP API and peer broker")
    play = commands.add_parser("play", help="play in the terminal")
    play.add_argument("--server", help="broker WebSocket URL (default: ZENGO_SIGNAL_URL)")
    args = parser.parse_args(argv)

    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "play":
        asyncio.run(run_console(settings, args.server or settings.signal_url))
        return
    uvicorn.run("zengo.server:app", host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    main()
