import asyncio

import httpx
import pytest

from livematch.core.http import NOT_MODIFIED, fetch_with_retry, request_with_retries


def test_request_with_retries_retries_on_500():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(500, request=request)
        return httpx.Response(200, json={"ok": True}, request=request)

    async def _sleep(_delay):
        return None

    async def _run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="https://example.com") as client:
            resp = await request_with_retries(
                client,
                "GET",
                "/test",
                retries=1,
                backoff_base=0.0,
                backoff_max=0.0,
                _sleep=_sleep,
            )
            assert resp.status_code == 200

    asyncio.run(_run())
    assert calls["count"] == 2


def test_request_with_retries_respects_retry_after():
    calls = {"count": 0}
    sleeps = []

    def handler(request):
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(429, headers={"Retry-After": "2"}, request=request)
        return httpx.Response(200, request=request)

    async def _sleep(delay):
        sleeps.append(delay)

    async def _run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="https://example.com") as client:
            resp = await request_with_retries(
                client,
                "GET",
                "/test",
                retries=1,
                backoff_base=0.0,
                backoff_max=0.0,
                _sleep=_sleep,
            )
            assert resp.status_code == 200

    asyncio.run(_run())
    assert calls["count"] == 2
    assert sleeps and sleeps[0] >= 2.0


def test_fetch_with_retry_uses_linear_backoff():
    calls = {"count": 0}
    sleeps = []

    def handler(request):
        calls["count"] += 1
        if calls["count"] < 3:
            return httpx.Response(502, request=request)
        return httpx.Response(200, json={"doc": [{"data": {"ok": True}}]}, request=request)

    async def _sleep(delay):
        sleeps.append(delay)

    async def _run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="https://example.com") as client:
            return await fetch_with_retry(
                client, "/stats", max_attempts=3, timeout_ms=1000, backoff_base_ms=200, _sleep=_sleep
            )

    data = asyncio.run(_run())
    assert data == {"doc": [{"data": {"ok": True}}]}
    assert sleeps == [0.2, 0.4]


def test_fetch_with_retry_304_short_circuits():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        return httpx.Response(304, request=request)

    async def _run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="https://example.com") as client:
            return await fetch_with_retry(client, "/stats", max_attempts=3, timeout_ms=1000, backoff_base_ms=0)

    assert asyncio.run(_run()) is NOT_MODIFIED
    assert calls["count"] == 1


def test_fetch_with_retry_raises_after_last_attempt():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        raise httpx.ConnectError("boom", request=request)

    async def _sleep(_delay):
        return None

    async def _run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="https://example.com") as client:
            await fetch_with_retry(client, "/stats", max_attempts=2, timeout_ms=1000, backoff_base_ms=100, _sleep=_sleep)

    with pytest.raises(httpx.ConnectError):
        asyncio.run(_run())
    assert calls["count"] == 2


def test_fetch_with_retry_times_out_each_attempt():
    sleeps = []

    class SlowClient:
        async def get(self, url, params=None, headers=None):
            await asyncio.sleep(1)

    async def _sleep(delay):
        sleeps.append(delay)

    async def _run():
        await fetch_with_retry(SlowClient(), "/stats", max_attempts=2, timeout_ms=10, backoff_base_ms=50, _sleep=_sleep)

    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(_run())
    assert sleeps == [0.05]
