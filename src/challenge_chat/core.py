"""Core data models for challenge-chat."""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union

ROLES = ("user", "assistant", "system")


class PaginationState(enum.Enum):
    """Where a conversation stands in walking its history backwards."""

    INITIAL = "initial"  # no page fetched yet
    LOADED = "loaded"  # cursor present, older pages remain
    EXHAUSTED = "exhausted"  # cursor is null


class SendPhase(enum.Enum):
    """Lifecycle of a single send attempt."""

    COMPOSED = "composed"
    SENT = "sent"  # placeholder visible
    RESOLVED = "resolved"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass
class Message:
    """A single message within a conversation."""

    id: str
    role: str  # "user" | "assistant" | "system"
    content: str
    created_at: Optional[str] = None  # ISO-8601, may be absent
    meta: dict = field(default_factory=dict)  # e.g. percent_on_track

    @classmethod
    def from_api(cls, data: dict) -> "Message":
        """Build a message from a history turn as the server returns it."""
        created = data.get("created_at") or data.get("createdAt")
        return cls(
            id=str(data.get("id") or ""),
            role=data.get("role") or "assistant",
            content=str(data.get("content") or ""),
            created_at=str(created) if created else None,
            meta=data.get("meta") or {},
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at,
            "meta": self.meta,
        }


@dataclass
class ConversationContext:
    """The subject of a conversation plus free-form data sent with every message."""

    target_id: int
    aux: dict = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: dict | None) -> Optional["ConversationContext"]:
        """Resolve the challenge id from a hosting page's context mapping.

        Accepts ``challenge_id``, ``challengeId`` or a nested ``challenge.id``.
        Returns None when no positive id can be found.
        """
        target = resolve_target_id(data)
        if target is None:
            return None
        aux = {k: v for k, v in (data or {}).items() if k not in ("challenge_id", "challengeId", "challenge")}
        return cls(target_id=target, aux=aux)


@dataclass
class HistoryPage:
    """One page of conversation history, newest message first."""

    target_id: int
    messages: list[Message]
    thread_id: Optional[Union[int, str]] = None
    next: Optional[str] = None  # older page boundary; None once exhausted
    previous: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict, target_id: int = 0) -> "HistoryPage":
        raw = data.get("messages")
        messages = [Message.from_api(m) for m in raw if isinstance(m, dict)] if isinstance(raw, list) else []
        return cls(
            target_id=_to_int(data.get("challenge_id")) or target_id,
            messages=messages,
            thread_id=data.get("thread_id"),
            next=data.get("next") or None,
            previous=data.get("previous") or None,
        )


@dataclass
class SendOk:
    message: Message
    ok: bool = field(default=True, init=False)


@dataclass
class SendFailed:
    error: str
    ok: bool = field(default=False, init=False)


SendResult = Union[SendOk, SendFailed]


# ── Helpers ──────────────────────────────────────────────────────


def new_id() -> str:
    """Return a fresh local message id."""
    return uuid.uuid4().hex


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Any) -> float:
    """Parse an ISO-8601 timestamp into epoch seconds.

    Unparsable or missing values sort as the epoch (0.0).
    """
    if not value or not isinstance(value, str):
        return 0.0
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return 0.0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def resolve_target_id(data: dict | None) -> Optional[int]:
    if not data:
        return None
    value = data.get("challenge_id")
    if value is None:
        value = data.get("challengeId")
    if value is None and isinstance(data.get("challenge"), dict):
        value = data["challenge"].get("id")
    target = _to_int(value)
    if target is None or target <= 0:
        return None
    return target


def _to_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None
