"""Runtime configuration read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_PEER_PREFIX = "zengo_v4_"
DEFAULT_ADVISOR_MODEL = "gemini-3-pro-preview"

TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
FALSE_WORDS = frozenset({"0", "false", "no", "off"})


def env_flag(name: str, *, default: bool = False) -> bool:
    """Read a ZenGo on/off switch such as ``ZENGO_ADVISOR_ENABLED``.

    Accepts 1/0, true/false, yes/no and on/off in any case. Other values
    leave ``default`` in place.
    """
    raw = os.environ.get(name)
    if raw is None:
        return default
    word = raw.strip().lower()
    if word in TRUE_WORDS:
        return True
    if word in FALSE_WORDS:
        return False
    return default


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    signal_url: str = "ws://127.0.0.1:8000/ws/peer"
    peer_prefix: str = DEFAULT_PEER_PREFIX
    advisor_enabled: bool = True
    advisor_model: str = DEFAULT_ADVISOR_MODEL
    advisor_timeout: float = 30.0
    api_key: Optional[str] = None


def load_settings() -> Settings:
    """Build :class:`Settings` from the current environment."""

    return Settings(
        host=os.environ.get("ZENGO_HOST", "0.0.0.0"),
        port=int(os.environ.get("ZENGO_PORT", "8000")),
        log_level=os.environ.get("ZENGO_LOG_LEVEL", "INFO").upper(),
        signal_url=os.environ.get("ZENGO_SIGNAL_URL", "ws://127.0.0.1:8000/ws/peer"),
        peer_prefix=os.environ.get("ZENGO_PEER_PREFIX", DEFAULT_PEER_PREFIX),
        advisor_enabled=env_flag("ZENGO_ADVISOR_ENABLED", default=True),
        advisor_model=os.environ.get("ZENGO_ADVISOR_MODEL", DEFAULT_ADVISOR_MODEL),
        advisor_timeout=float(os.environ.get("ZENGO_ADVISOR_TIMEOUT", "30")),
        api_key=os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY") or None,
    )
