# tests/test_http_fetch.py
from __future__ import annotations

import httpx
import pytest

from jobs.errors import DownloadError, TransientNetworkError
from services.http_fetch import HttpFetcher


def _fetcher(handler, attempts: int = 3) -> HttpFetcher:
    return HttpFetcher(httpx.AsyncClient(transport=httpx.MockTransport(handler)), attempts=attempts)


@pytest.mark.asyncio
async def test_fetch_returns_body_and_bare_content_type():
    fetcher = _fetcher(
        lambda request: httpx.Response(200, content=b"img", headers={"content-type": "image/webp; charset=binary"})
    )
    try:
        assert await fetcher.fetch("https://cdn.test/a.webp") == (b"img", "image/webp")
    finally:
        await fetcher.aclose()


@pytest.mark.asyncio
async def test_fetch_retries_server_errors():
    statuses = [503, 200]
    seen = []

    def handler(request):
        seen.append(request.url)
        return httpx.Response(statuses.pop(0), content=b"img")

    fetcher = _fetcher(handler, attempts=2)
    try:
        data, _ = await fetcher.fetch("https://cdn.test/a.png")
    finally:
        await fetcher.aclose()

    assert data == b"img"
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_fetch_gives_up_after_attempts():
    fetcher = _fetcher(lambda request: httpx.Response(429), attempts=1)
    try:
        with pytest.raises(TransientNetworkError):
            await fetcher.fetch("https://cdn.test/a.png")
    finally:
        await fetcher.aclose()


@pytest.mark.asyncio
async def test_transport_errors_are_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    fetcher = _fetcher(handler, attempts=1)
    try:
        with pytest.raises(TransientNetworkError):
            await fetcher.fetch("https://cdn.test/a.png")
    finally:
        await fetcher.aclose()


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(403)

    fetcher = _fetcher(handler, attempts=3)
    try:
        with pytest.raises(DownloadError):
            await fetcher.fetch("https://cdn.test/expired.png")
    finally:
        await fetcher.aclose()

    assert len(calls) == 1
