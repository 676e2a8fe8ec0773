# services/storage.py
"""
Supabase Storage access for the worker.

supabase-py is synchronous, so every call runs in a worker thread and is
bounded by an explicit timeout. Library failures are translated into the
job error taxonomy.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from supabase import Client, create_client

from core.config import Settings
from jobs.errors import StorageError, TransientNetworkError

logger = logging.getLogger(__name__)

# 409 (duplicate path) and 429 are worth another try with a fresh path / later
_RETRYABLE_CLIENT_STATUSES = {408, 409, 429}


def _status_of(exc: Exception) -> int | None:
    status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
    if status is None and exc.args and isinstance(exc.args[0], dict):
        status = exc.args[0].get("statusCode") or exc.args[0].get("status")
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _translate(exc: Exception, action: str, target: str) -> Exception:
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError)):
        return TransientNetworkError(f"Storage {action} {target} failed: {exc!r}")

    status = _status_of(exc)
    retryable = status is None or status >= 500 or status in _RETRYABLE_CLIENT_STATUSES
    return StorageError(
        f"Storage {action} {target} failed (status={status}): {exc}",
        retryable=retryable,
    )


class SupabaseStorage:
    def __init__(self, client: Client, timeout: float = 30.0):
        self._client = client
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> SupabaseStorage:
        if not settings.supabase_url or not settings.supabase_service_role_key:
            raise RuntimeError(
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set"
            )
        client = create_client(settings.supabase_url, settings.supabase_service_role_key)
        return cls(client, timeout=settings.http_timeout_seconds)

    async def _call(self, action: str, target: str, fn, /, *args, **kwargs) -> Any:
        # positional-only so supabase keywords such as path= pass straight through
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, **kwargs),
                timeout=self._timeout,
            )
        except Exception as exc:
            raise _translate(exc, action, target) from exc

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        """Store bytes under `path`; never overwrites an existing object."""
        await self._call(
            "upload",
            f"{bucket}/{path}",
            self._client.storage.from_(bucket).upload,
            path=path,
            file=data,
            file_options={"content-type": content_type, "upsert": "false"},
        )
        logger.info("Uploaded %d bytes to %s/%s", len(data), bucket, path)

    async def create_signed_url(self, bucket: str, path: str, ttl: int) -> str | None:
        data = await self._call(
            "sign",
            f"{bucket}/{path}",
            self._client.storage.from_(bucket).create_signed_url,
            path,
            ttl,
        )
        if isinstance(data, dict):
            return data.get("signedURL") or data.get("signedUrl") or data.get("signed_url")
        return None

    async def download(self, bucket: str, path: str) -> bytes:
        return await self._call(
            "download",
            f"{bucket}/{path}",
            self._client.storage.from_(bucket).download,
            path,
        )

    async def delete(self, bucket: str, path: str) -> None:
        await self._call(
            "delete",
            f"{bucket}/{path}",
            self._client.storage.from_(bucket).remove,
            [path],
        )
        logger.info("Deleted %s/%s", bucket, path)
