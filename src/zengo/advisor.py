"""Strategic advice for the player to move, generated by a hosted LLM."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp

from .config import Settings
from .game import BLACK, BOARD_SIZE, WHITE, GameState, render_board

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

EMPTY_ADVICE = "I'm thinking... Try focusing on territory near the edges."
FALLBACK_ADVICE = "The master is resting. Observe the board carefully!"


def build_prompt(state: GameState) -> str:
    return (
        "You are a professional 9-dan Go player.\n"
        f"Current board state ({BOARD_SIZE}x{BOARD_SIZE}):\n"
        f"{render_board(state.board)}\n\n"
        f"Current turn: {state.current_turn}\n"
        f"Black captures: {state.captures[BLACK]}\n"
        f"White captures: {state.captures[WHITE]}\n\n"
        "Briefly analyze the board and suggest a strategy for the "
        f"{state.current_turn} player in 2-3 sentences."
    )


@dataclass
class StrategicAdvisor:
    """Client for the Gemini ``generateContent`` endpoint.

    ``advise`` never raises: a failed call yields :data:`FALLBACK_ADVICE`.
    """

    api_key: Optional[str]
    model: str
    timeout: float = 30.0
    enabled: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "StrategicAdvisor":
        return cls(
            api_key=settings.api_key,
            model=settings.advisor_model,
            timeout=settings.advisor_timeout,
            enabled=settings.advisor_enabled,
        )

    async def advise(self, state: GameState) -> str:
        if not self.enabled or not self.api_key:
            logger.info(
                "Advisor unavailable (enabled=%s, key set=%s)",
                self.enabled,
                bool(self.api_key),
            )
            return FALLBACK_ADVICE
        try:
            text = await self._generate(build_prompt(state))
        except Exception:
            logger.exception("Advisor request failed")
            return FALLBACK_ADVICE
        return text.strip() or EMPTY_ADVICE

    async def _generate(self, prompt: str) -> str:
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        async with aiohttp.ClientSession() as session:
            async with session.post(
                GEMINI_URL.format(model=self.model),
                json=payload,
                headers={"x-goog-api-key": self.api_key or ""},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                resp.raise_for_status()
                data = await resp.json()
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = candidates[0].get("content", {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)
