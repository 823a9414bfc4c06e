"""HTTP transport for the practice-challenge assistant API.

Endpoints (relative to the configured base URL):
- GET    /chat/thread/?challenge_id=&page_size=   latest history page
- GET    <next URL>                               older page, cursor embedded
- POST   /chat/practice/                          send a message
- DELETE /chat/thread/clear/?challenge_id=        clear the thread

Authentication is a bearer token injected as a default header; the rest of
the auth lifecycle belongs to whoever supplies the token.
"""

import logging
from typing import Any, Optional

import httpx

from ..config import ChatSettings
from ..coordinator import CancelToken, raise_if_cancelled
from ..core import ConversationContext, HistoryPage
from ..errors import ConnectivityError, RequestTimeout, ServerError
from ..transport import ChatTransport

logger = logging.getLogger(__name__)

THREAD_ENDPOINT = "/chat/thread/"
CLEAR_ENDPOINT = "/chat/thread/clear/"
CHAT_ENDPOINT = "/chat/practice/"


class HttpTransport(ChatTransport):
    """Transport over :class:`httpx.AsyncClient`."""

    name = "http"

    def __init__(self, settings: ChatSettings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        headers = {"Accept": "application/json"}
        if settings.token:
            headers["Authorization"] = f"Bearer {settings.token}"

        self._owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(base_url=settings.api_url, timeout=settings.timeout)
        client.headers.update(headers)
        self._client = client

    async def fetch_history(
        self,
        target_id: int,
        *,
        page_size: int = 20,
        cursor: Optional[str] = None,
        token: Optional[CancelToken] = None,
    ) -> HistoryPage:
        if cursor:
            # The cursor already carries the page position and challenge id
            data = await self._request("GET", cursor, token=token)
        else:
            data = await self._request(
                "GET",
                THREAD_ENDPOINT,
                params={"challenge_id": target_id, "page_size": page_size},
                token=token,
            )
        if not isinstance(data, dict):
            data = {}
        return HistoryPage.from_api(data, target_id=target_id)

    async def send_message(
        self,
        text: str,
        context: ConversationContext,
        *,
        token: Optional[CancelToken] = None,
    ) -> dict[str, Any]:
        payload = {"text": text, "challenge_id": context.target_id, "context": context.aux}
        data = await self._request("POST", CHAT_ENDPOINT, json=payload, token=token)
        return data if isinstance(data, dict) else {}

    async def clear_thread(self, target_id: int, *, token: Optional[CancelToken] = None) -> bool:
        data = await self._request("DELETE", CLEAR_ENDPOINT, params={"challenge_id": target_id}, token=token)
        return bool(isinstance(data, dict) and data.get("cleared"))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── Private helpers ──────────────────────────────────────────────

    async def _request(self, method: str, url: str, *, token: Optional[CancelToken] = None, **kwargs) -> Any:
        """Issue a request and return the decoded JSON body.

        Raises ``RequestTimeout`` / ``ConnectivityError`` when no response
        arrives and ``ServerError`` for any non-2xx status.
        """
        raise_if_cancelled(token)
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("%s %s timed out", method, url)
            raise RequestTimeout(str(e) or "request timed out") from e
        except httpx.TransportError as e:
            logger.warning("%s %s failed: %s", method, url, e)
            raise ConnectivityError(str(e) or "connection failed") from e
        except httpx.HTTPError as e:
            # Redirect loops, undecodable bodies and the like
            logger.warning("%s %s failed: %r", method, url, e)
            raise ConnectivityError(str(e) or "request failed") from e
        raise_if_cancelled(token)

        body = _decode_body(response)
        if response.is_error:
            logger.debug("%s %s -> %s", method, url, response.status_code)
            raise ServerError(response.status_code, body)
        return body


def _decode_body(response: httpx.Response) -> Any:
    """Decode a JSON body, falling back to the raw text."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
