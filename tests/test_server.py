"""Tests for the FastAPI development backend."""

import pytest

from challenge_chat.core import parse_timestamp
from challenge_chat.server import ThreadRegistry, assistant_reply


@pytest.mark.asyncio
async def test_post_message(asgi_client):
    resp = await asgi_client.post("/chat/practice/", json={"text": " hello ", "challenge_id": 3})
    assert resp.status_code == 200
    data = resp.json()
    assert data["reply"] == assistant_reply("hello")
    assert data["percent_on_track"] == 50
    assert data["id"]
    assert data["created_at"]


@pytest.mark.asyncio
async def test_post_requires_challenge_id(asgi_client):
    resp = await asgi_client.post("/chat/practice/", json={"text": "hello"})
    assert resp.status_code == 400
    assert resp.json() == {"challenge_id": ["This field is required."]}


@pytest.mark.asyncio
async def test_post_rejects_blank_text(asgi_client):
    resp = await asgi_client.post("/chat/practice/", json={"text": "  ", "challenge_id": 1})
    assert resp.status_code == 400
    assert "text" in resp.json()


@pytest.mark.asyncio
async def test_post_rejects_oversized_text(asgi_client):
    resp = await asgi_client.post("/chat/practice/", json={"text": "x" * 4001, "challenge_id": 1})
    assert resp.status_code == 413
    assert resp.json() == {"detail": "Message too long."}


@pytest.mark.asyncio
async def test_thread_pages_newest_first(asgi_client, registry):
    for i in range(3):
        registry.add(1, "user", f"m{i}")

    resp = await asgi_client.get("/chat/thread/", params={"challenge_id": 1, "page_size": 2})
    data = resp.json()
    assert data["challenge_id"] == 1
    assert data["thread_id"] == 1
    assert [m["content"] for m in data["messages"]] == ["m2", "m1"]
    assert "cursor=2" in data["next"]
    assert data["previous"] is None

    resp = await asgi_client.get(data["next"])
    data = resp.json()
    assert [m["content"] for m in data["messages"]] == ["m0"]
    assert data["next"] is None
    assert "cursor=0" in data["previous"]


@pytest.mark.asyncio
async def test_empty_thread(asgi_client):
    resp = await asgi_client.get("/chat/thread/", params={"challenge_id": 9})
    data = resp.json()
    assert data["messages"] == []
    assert data["thread_id"] is None
    assert data["next"] is None


@pytest.mark.asyncio
async def test_thread_requires_challenge_id(asgi_client):
    resp = await asgi_client.get("/chat/thread/")
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_clear(asgi_client, registry):
    registry.add(4, "user", "bye")
    resp = await asgi_client.delete("/chat/thread/clear/", params={"challenge_id": 4})
    assert resp.json() == {"cleared": True}
    assert registry.threads.get(4) is None


class TestThreadRegistry:
    def test_timestamps_strictly_increase(self):
        registry = ThreadRegistry()
        stamps = [parse_timestamp(registry.add(1, "user", str(i)).created_at) for i in range(20)]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == 20

    def test_page_bounds(self):
        registry = ThreadRegistry()
        for i in range(4):
            registry.add(1, "user", str(i))
        page, more = registry.page(1, 2, 2)
        assert [m.content for m in page] == ["1", "0"]
        assert more is False
