# tests/conftest.py
from __future__ import annotations

import uuid

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from core.config import Settings
from jobs.handlers import HandlerContext
from models import Base
from services.asset_writer import AssetWriter
from services.http_fetch import HttpFetcher
from fakes import FakeProvider, FakeStorage, make_png


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'worker.db'}",
        replicate_api_token="test-token",
        network_retry_attempts=1,
    )


@pytest_asyncio.fixture
async def session_factory(settings):
    engine = create_async_engine(settings.database_url, connect_args={"timeout": 30})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def remote_images(png_bytes) -> dict[str, bytes]:
    """URL -> body served by the mock HTTP transport; unknown URLs 404."""
    return {
        "https://cdn.test/face-1.png": png_bytes,
        "https://cdn.test/face-2.png": make_png(80, 120, (10, 200, 90)),
        "https://cdn.test/out.png": png_bytes,
    }


@pytest_asyncio.fixture
async def fetcher(remote_images):
    def handler(request: httpx.Request) -> httpx.Response:
        body = remote_images.get(str(request.url))
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body, headers={"content-type": "image/png"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    fetcher = HttpFetcher(client, attempts=1)
    yield fetcher
    await fetcher.aclose()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def ctx(settings, storage, provider, fetcher) -> HandlerContext:
    return HandlerContext(
        settings=settings,
        storage=storage,
        provider=provider,
        fetcher=fetcher,
        assets=AssetWriter(storage, fetcher, bucket=settings.generated_bucket),
    )


@pytest.fixture
def owner_id() -> uuid.UUID:
    return uuid.uuid4()
