"""Observable view state for a conversation, independent of any UI toolkit."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .core import Message, PaginationState, SendPhase

logger = logging.getLogger(__name__)

Subscriber = Callable[["Observable"], None]


class Observable:
    """Minimal subscribe/notify contract."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self)
            except Exception:
                logger.exception("State subscriber %r failed", callback)


@dataclass(frozen=True)
class Banner:
    """A message shown above the transcript."""

    kind: str  # "error" | "info"
    text: str
    persistent: bool = False  # stays until the user retries


class ConversationState(Observable):
    """Everything a view needs to render one conversation."""

    def __init__(self, banner_delay: float = 3.5) -> None:
        super().__init__()
        self.banner_delay = banner_delay
        self.messages: tuple[Message, ...] = ()
        self.pagination = PaginationState.INITIAL
        self.loading_latest = False
        self.loading_older = False
        self.sending = False
        self.send_phase: Optional[SendPhase] = None
        self.draft = ""
        self.banner: Optional[Banner] = None
        self._banner_timer: Optional[asyncio.TimerHandle] = None

    def update(self, **changes) -> None:
        """Apply attribute changes and notify subscribers once."""
        for name, value in changes.items():
            if not hasattr(self, name) or name.startswith("_"):
                raise AttributeError(f"Unknown state field: {name}")
            setattr(self, name, value)
        self.notify()

    def show_banner(self, text: str, kind: str = "error", persistent: bool = False) -> None:
        """Show a banner; transient ones auto-dismiss after ``banner_delay``."""
        self._cancel_banner_timer()
        self.banner = Banner(kind=kind, text=text, persistent=persistent)
        if not persistent:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                self._banner_timer = loop.call_later(self.banner_delay, self._expire_banner, self.banner)
        self.notify()

    def dismiss_banner(self) -> None:
        self._cancel_banner_timer()
        if self.banner is not None:
            self.banner = None
            self.notify()

    def close(self) -> None:
        self._cancel_banner_timer()

    def _expire_banner(self, banner: Banner) -> None:
        self._banner_timer = None
        if self.banner is banner:
            self.banner = None
            self.notify()

    def _cancel_banner_timer(self) -> None:
        if self._banner_timer is not None:
            self._banner_timer.cancel()
            self._banner_timer = None
