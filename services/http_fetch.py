# services/http_fetch.py
from __future__ import annotations

import logging

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from jobs.errors import DownloadError, TransientNetworkError

logger = logging.getLogger(__name__)


class HttpFetcher:
    """Downloads remote images with bounded network-level retries."""

    def __init__(self, client: httpx.AsyncClient, attempts: int = 3):
        self._client = client
        self._attempts = max(attempts, 1)

    @classmethod
    def create(cls, timeout: float = 30.0, attempts: int = 3) -> HttpFetcher:
        client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        return cls(client, attempts=attempts)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, url: str) -> httpx.Response:
        try:
            response = await self._client.get(url)
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"GET {url} failed: {exc!r}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientNetworkError(f"GET {url} returned {response.status_code}")
        if response.status_code >= 400:
            raise DownloadError(f"GET {url} returned {response.status_code}")
        return response

    async def fetch(self, url: str) -> tuple[bytes, str | None]:
        """Return (body, content-type) for `url`."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._attempts),
            wait=wait_exponential(multiplier=0.5, max=5),
            retry=retry_if_exception_type(TransientNetworkError),
            reraise=True,
        ):
            with attempt:
                response = await self._get(url)

        content_type = response.headers.get("content-type")
        if content_type:
            content_type = content_type.split(";", 1)[0].strip()
        logger.debug("Downloaded %d bytes from %s", len(response.content), url)
        return response.content, content_type
