"""Transport registry: build the backend channel from settings."""

import httpx

from ..config import ChatSettings
from ..transport import ChatTransport
from .http import HttpTransport


def get_transport(settings: ChatSettings | None = None, client: httpx.AsyncClient | None = None) -> ChatTransport:
    """Return the default HTTP transport for *settings*."""
    return HttpTransport(settings or ChatSettings.from_env(), client=client)
