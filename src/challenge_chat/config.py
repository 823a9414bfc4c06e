"""Environment-driven settings for challenge-chat."""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://127.0.0.1:8000/api"
DEFAULT_TIMEOUT = 15.0
DEFAULT_PAGE_SIZE = 20
DEFAULT_MAX_CHARS = 4000
DEFAULT_BANNER_DELAY = 3.5


def get_api_url() -> str:
    """Return the backend base URL."""
    return os.environ.get("CHALLENGE_CHAT_API_URL") or DEFAULT_API_URL


def get_api_token() -> str | None:
    """Return the bearer token for the backend, if one is configured."""
    return os.environ.get("CHALLENGE_CHAT_TOKEN") or None


def _env_number(name: str, default, cast=float):
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r, using %s", name, raw, default)
        return default
    return value


@dataclass
class ChatSettings:
    """Settings shared by the transport and the conversation session."""

    api_url: str = DEFAULT_API_URL
    token: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    page_size: int = DEFAULT_PAGE_SIZE
    max_chars: int = DEFAULT_MAX_CHARS
    banner_delay: float = DEFAULT_BANNER_DELAY

    @classmethod
    def from_env(cls) -> "ChatSettings":
        return cls(
            api_url=get_api_url(),
            token=get_api_token(),
            timeout=_env_number("CHALLENGE_CHAT_TIMEOUT", DEFAULT_TIMEOUT),
            page_size=_env_number("CHALLENGE_CHAT_PAGE_SIZE", DEFAULT_PAGE_SIZE, int),
            max_chars=_env_number("CHALLENGE_CHAT_MAX_CHARS", DEFAULT_MAX_CHARS, int),
            banner_delay=_env_number("CHALLENGE_CHAT_BANNER_DELAY", DEFAULT_BANNER_DELAY),
        )
