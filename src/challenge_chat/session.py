"""Conversation session: history pagination, optimistic sends, cancellation.

One :class:`ConversationSession` exists per active conversation target. It
owns the transcript, the request coordinator, the pagination cursor and
the scroll anchor, and publishes everything a view needs through
:class:`~challenge_chat.state.ConversationState`.

Every coroutine here re-checks the session generation after each
``await``: a target change or disposal bumps it, and a result that arrives
for an older generation is dropped instead of being applied to the wrong
transcript.
"""

import asyncio
import logging
from typing import Callable, Iterable, Optional

from .config import ChatSettings
from .coordinator import RequestCoordinator
from .core import (
    ConversationContext,
    Message,
    PaginationState,
    SendFailed,
    SendPhase,
    SendResult,
    new_id,
    now_iso,
)
from .errors import ChatError, RequestCancelled, normalize_error
from .scroll import ScrollAnchor
from .state import ConversationState
from .store import TranscriptStore
from .transport import ChatTransport

logger = logging.getLogger(__name__)

PLACEHOLDER_TEXT = "Thinking…"
HISTORY_FAILED_MESSAGE = "Failed to load chat history."
CLEARED_MESSAGE = "Conversation cleared."
ROW_HEIGHT = 48.0


class ConversationSession:
    """Keeps one conversation's transcript in sync with the backend."""

    def __init__(
        self,
        transport: ChatTransport,
        *,
        target_id: Optional[int] = None,
        aux: Optional[dict] = None,
        seed: Iterable[Message] = (),
        settings: Optional[ChatSettings] = None,
        measure: Optional[Callable[[], float]] = None,
        client_height: float = 0.0,
    ):
        self.settings = settings or ChatSettings()
        self.transport = transport
        self.coordinator = RequestCoordinator(transport)
        self.target_id = target_id
        self.aux = dict(aux or {})
        self.seed = list(seed)
        self.store = TranscriptStore(self.seed)
        self.cursor: Optional[str] = None
        self.disabled = False
        self.state = ConversationState(banner_delay=self.settings.banner_delay)
        self.state.messages = self.store.messages
        self.anchor = ScrollAnchor(
            measure or (lambda: len(self.store) * ROW_HEIGHT),
            client_height=client_height,
        )

        self._generation = 0
        self._history_op: Optional[object] = None
        self._pending_placeholder: Optional[str] = None
        self._pending_user: Optional[str] = None
        self._older_task: Optional[asyncio.Task] = None
        self._active = False
        self._disposed = False

    async def __aenter__(self) -> "ConversationSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.dispose()

    # ── Read-only views ──────────────────────────────────────────────

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.store.messages

    @property
    def pagination(self) -> PaginationState:
        return self.state.pagination

    @property
    def context(self) -> Optional[ConversationContext]:
        if not self.target_id:
            return None
        return ConversationContext(target_id=self.target_id, aux=dict(self.aux))

    def can_send(self, text: Optional[str] = None) -> bool:
        """Return True if *text* (or the current draft) may be sent now."""
        raw = self.state.draft if text is None else text
        trimmed = (raw or "").strip()
        return (
            not self._disposed
            and not self.disabled
            and bool(self.target_id)
            and not self.coordinator.send_in_flight
            and 0 < len(trimmed) <= self.settings.max_chars
        )

    def can_load_older(self) -> bool:
        return (
            not self._disposed
            and bool(self.target_id)
            and self.cursor is not None
            and self.pagination is not PaginationState.EXHAUSTED
            and not self.coordinator.history.busy
        )

    # ── History ──────────────────────────────────────────────────────

    async def set_target(self, target_id: Optional[int]) -> None:
        """Switch to another conversation target and load its latest page.

        A target of None or 0 resets to the seed without any request.
        """
        if self._disposed or target_id == self.target_id:
            return
        logger.info("Conversation target changed: %s -> %s", self.target_id, target_id)
        self._reset()
        self.target_id = target_id
        await self.load_latest()

    async def load_latest(self, target_id: Optional[int] = None) -> None:
        """Reset to the seed and fetch the newest page of history."""
        if self._disposed:
            return
        if target_id is not None and target_id != self.target_id:
            logger.info("Conversation target changed: %s -> %s", self.target_id, target_id)
            self._reset()
            self.target_id = target_id

        # A send still in flight keeps its optimistic entries across a reload
        self.store.seed([*self.seed, *self._in_flight_messages()])
        self.cursor = None

        if not self.target_id:
            self._publish(pagination=PaginationState.EXHAUSTED, loading_latest=False, loading_older=False)
            return

        generation = self._generation
        op = self._begin_history_op()
        self._publish(pagination=PaginationState.INITIAL, loading_latest=True, loading_older=False)

        try:
            page = await self.coordinator.fetch_history(self.target_id, page_size=self.settings.page_size)
        except RequestCancelled:
            self._end_history_op(op, generation)
            return
        except Exception as e:
            if not self._end_history_op(op, generation):
                return
            logger.warning(
                "Loading history for target %s failed: %s", self.target_id, e,
                exc_info=not isinstance(e, ChatError),
            )
            self.state.show_banner(normalize_error(e) or HISTORY_FAILED_MESSAGE, persistent=True)
            return

        if not self._end_history_op(op, generation):
            return

        # Server pages are newest first
        self.store.merge_dedupe(reversed(page.messages))
        self._set_cursor(page.next)
        self._publish()
        self.anchor.pin_to_bottom()

    async def load_older(self) -> bool:
        """Fetch the page before the oldest loaded message.

        Returns True if a page was applied. Does nothing when history is
        exhausted, a history request is already in flight or no target is set.
        """
        if not self.can_load_older():
            return False

        generation = self._generation
        cursor = self.cursor
        op = self._begin_history_op()
        self.anchor.begin_prepend()
        self._publish(loading_older=True)

        try:
            page = await self.coordinator.fetch_history(
                self.target_id, page_size=self.settings.page_size, cursor=cursor
            )
        except RequestCancelled:
            self.anchor.abandon_prepend()
            self._end_history_op(op, generation)
            return False
        except Exception as e:
            self.anchor.abandon_prepend()
            if self._end_history_op(op, generation):
                logger.warning(
                    "Loading older history for target %s failed: %s", self.target_id, e,
                    exc_info=not isinstance(e, ChatError),
                )
                self.state.show_banner(normalize_error(e))
            return False

        if not self._end_history_op(op, generation):
            self.anchor.abandon_prepend()
            return False

        self.store.prepend_page(reversed(page.messages))
        self._set_cursor(page.next)
        self._publish()
        self.anchor.end_prepend()
        return True

    async def clear(self) -> bool:
        """Delete the conversation on the server and empty the transcript."""
        if self._disposed or not self.target_id:
            return False

        generation = self._generation
        op = self._begin_history_op()
        self._publish(loading_latest=False, loading_older=False)
        try:
            cleared = await self.coordinator.clear_thread(self.target_id)
        except RequestCancelled:
            self._end_history_op(op, generation)
            return False
        except Exception as e:
            if self._end_history_op(op, generation):
                logger.warning(
                    "Clearing thread for target %s failed: %s", self.target_id, e,
                    exc_info=not isinstance(e, ChatError),
                )
                self.state.show_banner(normalize_error(e))
            return False

        if not self._end_history_op(op, generation):
            return False
        if cleared:
            self.store.seed(self._in_flight_messages())
            self.cursor = None
            self._publish(pagination=PaginationState.EXHAUSTED)
            self.state.show_banner(CLEARED_MESSAGE, kind="info")
        return cleared

    async def retry(self) -> None:
        """Retry the latest-page load after a persistent failure."""
        self.state.dismiss_banner()
        await self.load_latest()

    # ── Sending ──────────────────────────────────────────────────────

    def set_draft(self, text: str) -> None:
        if self.coordinator.send_in_flight:
            self.state.update(draft=text)
        else:
            self.state.update(draft=text, send_phase=SendPhase.COMPOSED)

    async def send(self, text: Optional[str] = None) -> Optional[SendResult]:
        """Send *text* (or the current draft) with an optimistic placeholder.

        Returns the send result, or None if the send was rejected before
        reaching the network or was cancelled.
        """
        raw = self.state.draft if text is None else text
        if not self.can_send(raw):
            return None
        # Claimed synchronously, before the first await
        attempt = self.coordinator.begin_send()
        if attempt is None:
            return None

        generation = self._generation
        context = self.context
        user_text = raw.strip()

        if self._pending_placeholder is not None:
            # A superseded send must not leave its placeholder behind
            self.store.remove(self._pending_placeholder)

        user_msg = Message(id=new_id(), role="user", content=user_text, created_at=now_iso())
        placeholder = Message(
            id=new_id(), role="assistant", content=PLACEHOLDER_TEXT, created_at=now_iso(), meta={"pending": True}
        )
        self.store.append_optimistic(user_msg)
        self.store.append_optimistic(placeholder)
        self._pending_placeholder = placeholder.id
        self._pending_user = user_msg.id

        self.state.dismiss_banner()
        self._publish(draft="", sending=True, send_phase=SendPhase.SENT)
        self.anchor.follow()

        try:
            result = await self.coordinator.send(user_text, context)
        except RequestCancelled:
            self._settle_send(attempt, placeholder.id, generation, SendPhase.ABORTED)
            return None
        except asyncio.CancelledError:
            self._settle_send(attempt, placeholder.id, generation, SendPhase.ABORTED)
            raise
        except Exception as e:
            logger.exception("Send to target %s failed unexpectedly", self.target_id)
            result = SendFailed(normalize_error(e))
            self._settle_send(attempt, placeholder.id, generation, SendPhase.FAILED)
            if generation == self._generation:
                self.state.show_banner(result.error)
            return result

        if generation != self._generation:
            self._settle_send(attempt, placeholder.id, generation, SendPhase.ABORTED)
            return None

        if result.ok:
            self.store.replace(placeholder.id, result.message)
            self._settle_send(attempt, placeholder.id, generation, SendPhase.RESOLVED)
            self.anchor.follow()
        else:
            logger.warning("Send to target %s failed: %s", self.target_id, result.error)
            self._settle_send(attempt, placeholder.id, generation, SendPhase.FAILED)
            self.state.show_banner(result.error)
        return result

    # ── View hooks ───────────────────────────────────────────────────

    def on_scroll(self, scroll_top: float, client_height: Optional[float] = None) -> Optional[asyncio.Task]:
        """Report a scroll position; starts loading older history near the top."""
        near_top = self.anchor.update(scroll_top, client_height)
        if not near_top or not self.can_load_older():
            return None
        if self._older_task is not None and not self._older_task.done():
            return self._older_task
        self._older_task = asyncio.ensure_future(self.load_older())
        return self._older_task

    def activate(self) -> None:
        """Pin to the newest message when the conversation becomes visible."""
        if not self._active:
            self._active = True
            self.anchor.pin_to_bottom()

    def deactivate(self) -> None:
        self._active = False

    def dispose(self) -> None:
        """Cancel everything in flight. The session is unusable afterwards."""
        if self._disposed:
            return
        self._disposed = True
        self._reset(reason="disposed")
        self.state.close()

    # ── Private helpers ──────────────────────────────────────────────

    def _reset(self, reason: str = "target changed") -> None:
        self._generation += 1
        self.coordinator.cancel_all(reason)
        if self._older_task is not None and not self._older_task.done():
            self._older_task.cancel()
        self._older_task = None
        self._history_op = None
        self._pending_placeholder = None
        self._pending_user = None
        self.store.seed(self.seed)
        self.cursor = None
        self.anchor.abandon_prepend()
        self.state.dismiss_banner()
        self._publish(
            pagination=PaginationState.INITIAL,
            loading_latest=False,
            loading_older=False,
            sending=False,
            send_phase=None,
        )

    def _begin_history_op(self) -> object:
        op = object()
        self._history_op = op
        return op

    def _end_history_op(self, op: object, generation: int) -> bool:
        """Finish a history operation. Returns False if its result is stale."""
        if generation != self._generation or self._history_op is not op:
            return False
        self._history_op = None
        self._publish(loading_latest=False, loading_older=False)
        return True

    def _settle_send(self, attempt: object, placeholder_id: str, generation: int, phase: SendPhase) -> None:
        self.coordinator.end_send(attempt)
        if phase is not SendPhase.RESOLVED:
            self.store.remove(placeholder_id)
        if self._pending_placeholder == placeholder_id:
            self._pending_placeholder = None
            self._pending_user = None
        if generation != self._generation:
            return
        self._publish(sending=self.coordinator.send_in_flight, send_phase=phase)

    def _in_flight_messages(self) -> list[Message]:
        """The user message and placeholder of the send still awaiting a reply."""
        pending = (self._pending_user, self._pending_placeholder)
        return [m for m in self.store if m.id in pending]

    def _set_cursor(self, cursor: Optional[str]) -> None:
        self.cursor = cursor or None
        self.state.pagination = PaginationState.LOADED if self.cursor else PaginationState.EXHAUSTED

    def _publish(self, **changes) -> None:
        self.state.update(messages=self.store.messages, **changes)
