"""Shared test fixtures for challenge-chat."""

import asyncio

import httpx
import pytest

from challenge_chat.config import ChatSettings
from challenge_chat.coordinator import raise_if_cancelled
from challenge_chat.core import HistoryPage, Message
from challenge_chat.server import ThreadRegistry, create_app
from challenge_chat.transport import ChatTransport
from challenge_chat.transports.http import HttpTransport


def make_message(id, minute=0, role="user", content=None, second=0):
    """Build a message stamped 2025-01-15 10:<minute>:<second> UTC."""
    return Message(
        id=id,
        role=role,
        content=content if content is not None else f"message {id}",
        created_at=f"2025-01-15T10:{minute:02d}:{second:02d}+00:00",
    )


class ScriptedTransport(ChatTransport):
    """Fake transport answering from scripted pages and replies.

    Pages are keyed by ``(target_id, cursor)``; the first page uses cursor
    None. Calls whose key has an entry in ``gates`` wait for that event
    before answering, which lets tests hold a request in flight.
    """

    name = "scripted"

    def __init__(self):
        self.pages: dict = {}
        self.replies: list = []
        self.clear_result = True
        self.gates: dict = {}
        self.history_calls: list = []
        self.send_calls: list = []
        self.clear_calls: list = []

    def add_page(self, target_id, newest_first, next=None, cursor=None):
        self.pages[(target_id, cursor)] = HistoryPage(
            target_id=target_id, messages=list(newest_first), thread_id=target_id, next=next
        )

    def fail_page(self, target_id, error, cursor=None):
        self.pages[(target_id, cursor)] = error

    def hold(self, key) -> asyncio.Event:
        self.gates[key] = asyncio.Event()
        return self.gates[key]

    async def _wait(self, key, token):
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        raise_if_cancelled(token)

    async def fetch_history(self, target_id, *, page_size=20, cursor=None, token=None):
        self.history_calls.append((target_id, page_size, cursor))
        await self._wait((target_id, cursor), token)
        result = self.pages.get((target_id, cursor))
        if result is None:
            return HistoryPage(target_id=target_id, messages=[])
        if isinstance(result, Exception):
            raise result
        return result

    async def send_message(self, text, context, *, token=None):
        self.send_calls.append((text, context))
        await self._wait("send", token)
        result = self.replies.pop(0) if self.replies else {"reply": f"echo: {text}"}
        if isinstance(result, Exception):
            raise result
        return result

    async def clear_thread(self, target_id, *, token=None):
        self.clear_calls.append(target_id)
        await self._wait("clear", token)
        if isinstance(self.clear_result, Exception):
            raise self.clear_result
        return self.clear_result


async def settle(rounds: int = 5):
    """Let pending tasks run up to their next suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def transport():
    return ScriptedTransport()


@pytest.fixture
def settings():
    return ChatSettings(api_url="http://test/api", banner_delay=0.05)


@pytest.fixture
def registry():
    return ThreadRegistry()


@pytest.fixture
def dev_app(registry):
    return create_app(registry)


@pytest.fixture
def asgi_client(dev_app):
    """An httpx client wired straight to the development backend."""
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=dev_app), base_url="http://test/api")


@pytest.fixture
def http_transport(settings, asgi_client):
    return HttpTransport(settings, client=asgi_client)
