"""Abstract base class for conversation backends."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional

from .core import ConversationContext, HistoryPage

if TYPE_CHECKING:
    from .coordinator import CancelToken


class ChatTransport(ABC):
    """Base class for the request/response channel to the assistant backend.

    Implementations raise the exceptions from :mod:`challenge_chat.errors`:
    ``TransportError`` when no response arrived, ``ServerError`` for a
    non-success response and ``RequestCancelled`` once *token* fires.
    """

    name: str

    @abstractmethod
    async def fetch_history(
        self,
        target_id: int,
        *,
        page_size: int = 20,
        cursor: Optional[str] = None,
        token: Optional["CancelToken"] = None,
    ) -> HistoryPage:
        """Return one page of history, newest first.

        Without *cursor* the latest page is returned; with it, the page the
        cursor points at.
        """
        ...

    @abstractmethod
    async def send_message(
        self,
        text: str,
        context: ConversationContext,
        *,
        token: Optional["CancelToken"] = None,
    ) -> dict[str, Any]:
        """Send a user message and return the raw reply body."""
        ...

    @abstractmethod
    async def clear_thread(self, target_id: int, *, token: Optional["CancelToken"] = None) -> bool:
        """Delete the conversation thread. Returns the server's ``cleared`` flag."""
        ...

    async def aclose(self) -> None:
        """Release any held connections."""
        return None
