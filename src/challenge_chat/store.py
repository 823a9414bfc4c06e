"""Ordered, deduplicated message collection for one conversation target."""

import logging
from typing import Iterable, Iterator, Optional

from .core import Message, parse_timestamp

logger = logging.getLogger(__name__)


def dedupe_sorted(messages: Iterable[Message]) -> list[Message]:
    """Key messages by id (last write wins) and sort oldest first.

    A re-keyed id keeps the position of its first occurrence, so the stable
    sort preserves merge-input order among equal timestamps.
    """
    by_id: dict[str, Message] = {}
    for msg in messages:
        by_id[str(msg.id)] = msg
    return sorted(by_id.values(), key=lambda m: parse_timestamp(m.created_at))


class TranscriptStore:
    """Messages of one conversation, ascending by timestamp, unique by id.

    History merges re-sort the whole collection; optimistic inserts append
    without sorting since they are always the newest arrivals.
    """

    def __init__(self, initial: Iterable[Message] = ()):
        self._messages: list[Message] = dedupe_sorted(initial)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __contains__(self, message_id: object) -> bool:
        return any(m.id == message_id for m in self._messages)

    @property
    def messages(self) -> tuple[Message, ...]:
        """Immutable snapshot of the current contents."""
        return tuple(self._messages)

    def ids(self) -> list[str]:
        return [m.id for m in self._messages]

    def get(self, message_id: str) -> Optional[Message]:
        for msg in self._messages:
            if msg.id == message_id:
                return msg
        return None

    def seed(self, initial: Iterable[Message]) -> None:
        """Replace the contents with a deduped, sorted copy of *initial*."""
        self._messages = dedupe_sorted(initial)

    def clear(self) -> None:
        self._messages = []

    def merge_dedupe(self, incoming: Iterable[Message]) -> None:
        """Merge a page of messages into the store.

        Idempotent: merging the same page twice leaves the store unchanged,
        which absorbs overlap at pagination boundaries.
        """
        incoming = list(incoming)
        before = len(self._messages)
        self._messages = dedupe_sorted([*self._messages, *incoming])
        logger.debug("Merged %d messages (%d -> %d)", len(incoming), before, len(self._messages))

    def prepend_page(self, older: Iterable[Message]) -> None:
        """Merge an older page, oldest first, ahead of the current contents."""
        self._messages = dedupe_sorted([*older, *self._messages])

    def append_optimistic(self, message: Message) -> None:
        """Append without re-sorting. Replaces any entry with the same id."""
        self._messages = [m for m in self._messages if m.id != message.id]
        self._messages.append(message)

    def replace(self, message_id: str, message: Message) -> bool:
        """Swap the entry *message_id* for *message* in place.

        Any other entry already holding the new id is dropped to keep ids
        unique. Returns False if *message_id* is not present.
        """
        for index, existing in enumerate(self._messages):
            if existing.id == message_id:
                break
        else:
            return False

        if message.id != message_id:
            self._messages = [
                m for i, m in enumerate(self._messages) if i == index or m.id != message.id
            ]
            index = next(i for i, m in enumerate(self._messages) if m.id == message_id)
        self._messages[index] = message
        return True

    def remove(self, message_id: str) -> bool:
        """Drop the entry *message_id*. Returns False if it was not present."""
        remaining = [m for m in self._messages if m.id != message_id]
        removed = len(remaining) != len(self._messages)
        self._messages = remaining
        return removed
