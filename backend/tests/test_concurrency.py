"""
Slow storage must not stall other requests on the event loop.
"""

import asyncio
import time

import httpx

from micronforce.main import create_app
from micronforce.storage.memory import MemoryLogStore, MemorySettingsStore

from conftest import BYPASS_TOKEN, make_context

STORE_DELAY = 0.5


class SlowSettingsStore(MemorySettingsStore):
    def get(self):
        time.sleep(STORE_DELAY)
        return super().get()


class SlowLogStore(MemoryLogStore):
    def append(self, entry):
        time.sleep(STORE_DELAY)
        return super().append(entry)


async def _timed_health(client: httpx.AsyncClient) -> tuple[httpx.Response, float]:
    # Let the slow request reach the store first.
    await asyncio.sleep(0.05)
    start = time.perf_counter()
    response = await client.get("/api/health")
    return response, time.perf_counter() - start


async def _race(ctx, method: str, path: str, **kwargs):
    transport = httpx.ASGITransport(app=create_app(ctx))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        slow, (health, elapsed) = await asyncio.gather(
            client.request(method, path, **kwargs),
            _timed_health(client),
        )
    return slow, health, elapsed


def test_slow_settings_store_does_not_block_health(upstream):
    ctx = make_context(upstream)
    ctx.settings_store = SlowSettingsStore(ctx.settings_store.get())

    slow, health, elapsed = asyncio.run(
        _race(ctx, "GET", "/api/super/settings", headers={"X-Admin": BYPASS_TOKEN})
    )

    assert slow.status_code == 200
    assert health.json() == {"ok": True}
    assert elapsed < 0.2


def test_slow_settings_store_does_not_block_during_tts(upstream):
    ctx = make_context(upstream)
    ctx.settings_store = SlowSettingsStore(ctx.settings_store.get())

    slow, health, elapsed = asyncio.run(_race(ctx, "GET", "/api/tts", params={"text": "Hello"}))

    assert slow.status_code == 200
    assert health.status_code == 200
    assert elapsed < 0.2


def test_slow_log_append_does_not_block_health(upstream):
    ctx = make_context(upstream)
    ctx.log_store = SlowLogStore()

    slow, health, elapsed = asyncio.run(
        _race(
            ctx,
            "POST",
            "/api/chat/user/send",
            json={"messages": [{"role": "user", "content": "hi"}]},
        )
    )

    assert slow.json()["reply"] == "hello"
    assert health.status_code == 200
    assert elapsed < 0.2
    assert len(ctx.log_store.query()) == 1
