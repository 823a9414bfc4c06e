"""Error taxonomy and the normalizer that turns any failure into one safe string.

Transports raise the exceptions defined here. Everything that reaches the
user goes through :func:`normalize_error`, which never raises and never
returns raw payloads, markup or stack traces.

Server error bodies have no fixed shape. They are treated as a JSON value
(``str | int | float | bool | list | dict | None``) and flattened by
structural recursion into candidate strings; the shortest candidate wins.
"""

import asyncio
import logging
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

ErrorBody = Union[str, int, float, bool, list, dict, None]

ABORTED_MESSAGE = "Request aborted."
CONNECTIVITY_MESSAGE = "Couldn’t reach the server. Check your connection and try again."
TIMEOUT_MESSAGE = "The request timed out. Please try again."
EMPTY_REPLY_MESSAGE = "The assistant returned an empty response. Please try again."
DEFAULT_MESSAGE = "Something went wrong. Please try again."

TIMEOUT_CODE = "ECONNABORTED"

STRING_BODY_LIMIT = 300
CANDIDATE_LIMIT = 260

DIRECT_KEYS = ("detail", "error", "message", "msg", "reason", "description")
NON_FIELD_KEY = "non_field_errors"

INTERNAL_MARKERS = (
    "traceback",
    "stack trace",
    "exception",
    "django",
    "sql",
    "undefined",
    "null",
    "typeerror",
    "valueerror",
    "<html",
    "<!doctype",
    "<body",
)

STATUS_MESSAGES = {
    400: "Your message couldn’t be processed. Please try rephrasing.",
    401: "Your session has expired. Please log in again.",
    403: "You don’t have permission to do that.",
    404: "Chat service not available. Please contact support.",
    408: TIMEOUT_MESSAGE,
    413: "Your message is too large. Please shorten it.",
    429: "Too many requests. Please wait a moment and try again.",
}
SERVER_ERROR_MESSAGE = "Server error. Please try again in a bit."


class ChatError(Exception):
    """Base class for all challenge-chat failures."""


class RequestCancelled(ChatError):
    """An operation was superseded or aborted. Never shown to the user."""


class TransportError(ChatError):
    """No response was received from the server."""

    def __init__(self, message: str = "", code: Optional[str] = None):
        super().__init__(message or "transport error")
        self.code = code


class ConnectivityError(TransportError):
    """The server could not be reached."""


class RequestTimeout(TransportError):
    """The transport gave up waiting for a response."""

    def __init__(self, message: str = "request timed out"):
        super().__init__(message, code=TIMEOUT_CODE)


class ServerError(ChatError):
    """The server answered with a non-success status."""

    def __init__(self, status: int, body: ErrorBody = None):
        super().__init__(f"server responded with status {status}")
        self.status = status
        self.body = body


# ── Classification ───────────────────────────────────────────────


def is_cancellation(error: BaseException) -> bool:
    """Return True if *error* marks a cancelled rather than failed operation."""
    return isinstance(error, (RequestCancelled, asyncio.CancelledError))


def status_message(status: Optional[int]) -> str:
    """Generic, status-keyed message used when the body gives nothing usable."""
    if not status:
        return CONNECTIVITY_MESSAGE
    if status in STATUS_MESSAGES:
        return STATUS_MESSAGES[status]
    if status >= 500:
        return SERVER_ERROR_MESSAGE
    return DEFAULT_MESSAGE


def looks_like_html(text: str) -> bool:
    t = text.strip().lower()
    return t.startswith("<!doctype") or t.startswith("<html") or "<body" in t


def looks_internal(text: str) -> bool:
    """Return True if *text* appears to leak server internals."""
    lower = text.lower()
    return any(marker in lower for marker in INTERNAL_MARKERS)


# ── Flattening ───────────────────────────────────────────────────


def _truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + "…"
    return text


def _emit(out: list[str], path: str, text: str) -> None:
    out.append(f"{path}: {text}" if path else text)


def flatten_error_body(body: ErrorBody, path: str = "", out: Optional[list[str]] = None) -> list[str]:
    """Flatten an arbitrary error body into short candidate messages.

    Direct message keys are emitted without a key prefix; every other field
    is recursed into with its dotted key path prefixed to the result.
    """
    if out is None:
        out = []

    if body is None:
        return out

    # bool before int: bool is an int subclass
    if isinstance(body, bool):
        _emit(out, path, "true" if body else "false")
        return out

    if isinstance(body, str):
        text = body.strip()
        if text:
            _emit(out, path, _truncate(text, STRING_BODY_LIMIT))
        return out

    if isinstance(body, (int, float)):
        _emit(out, path, str(body))
        return out

    if isinstance(body, (list, tuple)):
        for item in body:
            flatten_error_body(item, path, out)
        return out

    if isinstance(body, dict):
        direct = next((body[k] for k in DIRECT_KEYS if body.get(k) is not None), None)
        if direct is not None:
            flatten_error_body(direct, path, out)

        if body.get(NON_FIELD_KEY) is not None:
            flatten_error_body(body[NON_FIELD_KEY], path or "error", out)

        for key, value in body.items():
            if key in DIRECT_KEYS or key == NON_FIELD_KEY:
                continue
            flatten_error_body(value, f"{path}.{key}" if path else str(key), out)
        return out

    _emit(out, path, str(body))
    return out


def best_message(body: ErrorBody) -> Optional[str]:
    """Pick the most presentable message from an error body, if any."""
    if body is None:
        return None

    if isinstance(body, str):
        text = body.strip()
        if not text or looks_like_html(text):
            return None
        return _truncate(text, STRING_BODY_LIMIT)

    candidates = [
        _truncate(c, CANDIDATE_LIMIT)
        for c in (c.strip() for c in flatten_error_body(body))
        if c
    ]
    if not candidates:
        return None

    # min() keeps the first of equally short candidates
    return min(candidates, key=len)


# ── Entry point ──────────────────────────────────────────────────


def normalize_error(error: BaseException) -> str:
    """Collapse any caught error into one short, human-readable string."""
    try:
        return _normalize(error)
    except Exception:
        logger.exception("Failed to normalize %r", error)
        return DEFAULT_MESSAGE


def _normalize(error: BaseException) -> str:
    if is_cancellation(error):
        return ABORTED_MESSAGE

    if isinstance(error, TransportError):
        if error.code == TIMEOUT_CODE:
            return TIMEOUT_MESSAGE
        return CONNECTIVITY_MESSAGE

    if not isinstance(error, ServerError):
        # Anything else never produced a response
        return CONNECTIVITY_MESSAGE

    fallback = status_message(error.status)
    extracted = best_message(error.body)
    if not extracted or looks_internal(extracted):
        return fallback
    return extracted
