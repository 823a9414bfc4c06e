"""Cancellation scopes and the request coordinator built on them.

A scope runs at most one operation at a time. Starting a new operation in
a scope cancels the pending one first, so a newer request always
supersedes an older one instead of racing it. Cancellation surfaces to the
caller as :class:`~challenge_chat.errors.RequestCancelled`.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .core import ConversationContext, HistoryPage, Message, SendFailed, SendOk, SendResult, new_id, now_iso
from .errors import EMPTY_REPLY_MESSAGE, ChatError, RequestCancelled, is_cancellation, normalize_error
from .transport import ChatTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    """Cancellation flag handed to transports with every request."""

    __slots__ = ("_event", "reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        """Suspend until cancellation is requested."""
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelled(self.reason or "cancelled")


def raise_if_cancelled(token: Optional[CancelToken]) -> None:
    """Convenience helper raising when *token* has been signalled."""
    if token is not None:
        token.raise_if_cancelled()


class CancelScope:
    """A named domain in which a newer operation supersedes an older one."""

    def __init__(self, name: str):
        self.name = name
        self._token: Optional[CancelToken] = None
        self._task: Optional[asyncio.Future] = None

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel the pending operation, if any. Returns True if one was pending."""
        token, task = self._token, self._task
        self._token = self._task = None
        if token is not None:
            token.cancel(reason)
        if task is not None and not task.done():
            logger.debug("Cancelling pending %s request (%s)", self.name, reason)
            task.cancel()
            return True
        return False

    async def run(self, operation: Callable[[CancelToken], Awaitable[T]]) -> T:
        """Run ``operation(token)`` as this scope's only pending operation."""
        self.cancel("superseded")

        token = CancelToken()
        task = asyncio.ensure_future(operation(token))
        self._token, self._task = token, task
        try:
            result = await task
        except asyncio.CancelledError:
            if token.cancelled:
                raise RequestCancelled(token.reason or "cancelled") from None
            # The caller itself is being cancelled
            raise
        finally:
            if self._task is task:
                self._token = self._task = None

        # Still relevant? The scope may have been cancelled after the result arrived.
        token.raise_if_cancelled()
        return result


class RequestCoordinator:
    """Owns the history and send scopes plus the synchronous send guard."""

    def __init__(self, transport: ChatTransport):
        self.transport = transport
        self.history = CancelScope("history")
        self.send_scope = CancelScope("send")
        self._send_attempt: Optional[object] = None

    # ── Send guard ───────────────────────────────────────────────

    @property
    def send_in_flight(self) -> bool:
        return self._send_attempt is not None

    def begin_send(self) -> Optional[object]:
        """Claim the send guard. Returns an attempt handle, or None if taken."""
        if self._send_attempt is not None:
            return None
        self._send_attempt = object()
        return self._send_attempt

    def end_send(self, attempt: object) -> None:
        """Release the guard, unless a newer attempt already owns it."""
        if self._send_attempt is attempt:
            self._send_attempt = None

    # ── Operations ───────────────────────────────────────────────

    async def fetch_history(
        self, target_id: int, *, page_size: int = 20, cursor: Optional[str] = None
    ) -> HistoryPage:
        logger.debug("Fetching history for target %s (cursor=%s)", target_id, cursor)
        return await self.history.run(
            lambda token: self.transport.fetch_history(
                target_id, page_size=page_size, cursor=cursor, token=token
            )
        )

    async def clear_thread(self, target_id: int) -> bool:
        return await self.history.run(lambda token: self.transport.clear_thread(target_id, token=token))

    async def send(self, text: str, context: ConversationContext) -> SendResult:
        """Send *text* and return the outcome.

        Failures come back as :class:`SendFailed` with a normalized message.
        Cancellation is raised as :class:`RequestCancelled`.
        """
        try:
            data = await self.send_scope.run(
                lambda token: self.transport.send_message(text, context, token=token)
            )
        except ChatError as e:
            if is_cancellation(e):
                raise
            logger.warning("Send failed for target %s: %s", context.target_id, e)
            return SendFailed(normalize_error(e))
        except Exception as e:
            logger.exception("Unexpected failure sending to target %s", context.target_id)
            return SendFailed(normalize_error(e))
        return reply_to_result(data)

    def cancel_all(self, reason: str = "cancelled") -> None:
        """Cancel both scopes and release the send guard."""
        self.history.cancel(reason)
        self.send_scope.cancel(reason)
        self._send_attempt = None


def reply_to_result(data: Any) -> SendResult:
    """Turn a send response body into a :data:`SendResult`.

    The reply text is taken from ``reply``, else ``message``, else ``detail``.
    A blank reply is a soft failure, not a transport error.
    """
    if not isinstance(data, dict):
        data = {}
    reply = ""
    for key in ("reply", "message", "detail"):
        if isinstance(data.get(key), str):
            reply = data[key]
            break
    reply = reply.strip()
    if not reply:
        return SendFailed(EMPTY_REPLY_MESSAGE)

    meta = {}
    if data.get("percent_on_track") is not None:
        meta["percent_on_track"] = data["percent_on_track"]

    server_id = data.get("id")
    created = data.get("created_at") or data.get("createdAt")
    return SendOk(Message(
        id=str(server_id) if server_id not in (None, "") else f"srv_{new_id()}",
        role="assistant",
        content=reply,
        created_at=str(created) if created else now_iso(),
        meta=meta,
    ))
