"""FastAPI development backend for challenge-chat.

Implements the practice assistant wire contract in memory so the client
can be exercised end to end without the real service. The assistant just
echoes what it receives.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Body, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from .config import DEFAULT_MAX_CHARS
from .core import Message, new_id

logger = logging.getLogger(__name__)


class ThreadRegistry:
    """In-memory conversation threads keyed by challenge id, oldest first."""

    def __init__(self) -> None:
        self.threads: dict[int, list[Message]] = {}
        self.thread_ids: dict[int, int] = {}
        self._last: datetime | None = None

    def _timestamp(self) -> str:
        # Strictly increasing, so server order never depends on tie-breaking
        now = datetime.now(timezone.utc)
        if self._last is not None and now <= self._last:
            now = self._last + timedelta(milliseconds=1)
        self._last = now
        return now.isoformat()

    def thread_id(self, challenge_id: int) -> int:
        if challenge_id not in self.thread_ids:
            self.thread_ids[challenge_id] = len(self.thread_ids) + 1
        return self.thread_ids[challenge_id]

    def add(self, challenge_id: int, role: str, content: str, **meta: Any) -> Message:
        msg = Message(id=new_id(), role=role, content=content, created_at=self._timestamp(), meta=meta)
        self.threads.setdefault(challenge_id, []).append(msg)
        self.thread_id(challenge_id)
        return msg

    def page(self, challenge_id: int, offset: int, size: int) -> tuple[list[Message], bool]:
        """Return messages newest first, starting *offset* from the newest."""
        newest_first = list(reversed(self.threads.get(challenge_id, [])))
        chunk = newest_first[offset: offset + size]
        return chunk, offset + size < len(newest_first)

    def clear(self, challenge_id: int) -> bool:
        return self.threads.pop(challenge_id, None) is not None


def _field_error(field: str, message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={field: [message]})


def _parse_challenge_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        n = int(value)
    except (TypeError, ValueError):
        return None
    return n if n > 0 else None


def assistant_reply(text: str) -> str:
    return f"You said: {text}"


def create_app(registry: ThreadRegistry | None = None) -> FastAPI:
    """Build the development backend, optionally around an existing registry."""
    app = FastAPI(title="challenge-chat dev backend", version="0.1.0")
    app.state.registry = registry or ThreadRegistry()
    router = APIRouter()

    @router.get("/chat/thread/")
    async def get_thread(
        request: Request,
        challenge_id: int = Query(..., ge=1),
        page_size: int = Query(20, ge=1, le=100),
        cursor: int = Query(0, ge=0),
    ):
        """Return one page of history, newest first."""
        reg: ThreadRegistry = request.app.state.registry
        messages, more = reg.page(challenge_id, cursor, page_size)
        next_url = None
        if more:
            next_url = str(request.url.include_query_params(cursor=cursor + page_size))
        previous_url = None
        if cursor > 0:
            previous_url = str(request.url.include_query_params(cursor=max(0, cursor - page_size)))
        return {
            "thread_id": reg.thread_id(challenge_id) if challenge_id in reg.threads else None,
            "challenge_id": challenge_id,
            "next": next_url,
            "previous": previous_url,
            "messages": [m.to_dict() for m in messages],
        }

    @router.post("/chat/practice/")
    async def post_message(request: Request, payload: dict = Body(...)):
        """Store a user message and answer it."""
        reg: ThreadRegistry = request.app.state.registry

        challenge_id = _parse_challenge_id(payload.get("challenge_id"))
        if challenge_id is None:
            return _field_error("challenge_id", "This field is required.")

        text = payload.get("text")
        if not isinstance(text, str) or not text.strip():
            return _field_error("text", "This field may not be blank.")
        if len(text) > DEFAULT_MAX_CHARS:
            return JSONResponse(status_code=413, content={"detail": "Message too long."})

        reg.add(challenge_id, "user", text.strip())
        reply = reg.add(challenge_id, "assistant", assistant_reply(text.strip()), percent_on_track=50)
        logger.info("Answered message for challenge %s", challenge_id)
        return {
            "reply": reply.content,
            "id": reply.id,
            "created_at": reply.created_at,
            "percent_on_track": reply.meta.get("percent_on_track"),
        }

    @router.delete("/chat/thread/clear/")
    async def clear_thread(request: Request, challenge_id: int = Query(..., ge=1)):
        """Delete a challenge's thread."""
        reg: ThreadRegistry = request.app.state.registry
        return {"cleared": reg.clear(challenge_id)}

    app.include_router(router, prefix="/api")
    return app


app = create_app()
