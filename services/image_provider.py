# services/image_provider.py
from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
import replicate
from replicate.exceptions import ModelError, ReplicateError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import Settings
from jobs.errors import ProviderError, TransientNetworkError

logger = logging.getLogger(__name__)


class ReplicateProvider:
    """
    One logical generation attempt against a Replicate model.

    The response is returned untouched; its shape varies by model and
    client version and is left to the output normalizer.
    """

    def __init__(
        self,
        client: replicate.Client,
        timeout: float = 120.0,
        attempts: int = 3,
    ):
        self._client = client
        self._timeout = timeout
        self._attempts = max(attempts, 1)

    @classmethod
    def from_settings(cls, settings: Settings) -> ReplicateProvider:
        if not settings.replicate_api_token:
            raise RuntimeError("REPLICATE_API_TOKEN must be set")
        return cls(
            replicate.Client(api_token=settings.replicate_api_token),
            timeout=settings.provider_timeout_seconds,
            attempts=settings.network_retry_attempts,
        )

    async def _run_once(self, model_id: str, input: dict) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._client.run, model_id, input=input),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TransientNetworkError(
                f"Replicate {model_id} timed out after {self._timeout:.0f}s"
            ) from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Replicate {model_id} unreachable: {exc!r}") from exc
        except ModelError as exc:
            raise ProviderError(f"Replicate {model_id} prediction failed: {exc}") from exc
        except ReplicateError as exc:
            status = getattr(exc, "status", None)
            if status is None or status == 429 or status >= 500:
                raise TransientNetworkError(f"Replicate {model_id} error ({status}): {exc}") from exc
            raise ProviderError(f"Replicate {model_id} rejected request ({status}): {exc}") from exc

    async def run(self, model_id: str, input: dict) -> Any:
        logger.info(
            "Provider: running %s (prompt=%d chars, images=%d)",
            model_id,
            len(input.get("prompt") or ""),
            len(input.get("image_input") or []),
        )
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._attempts),
            wait=wait_exponential(multiplier=1, max=10),
            retry=retry_if_exception_type(TransientNetworkError),
            reraise=True,
        ):
            with attempt:
                output = await self._run_once(model_id, input)

        logger.info("Provider: %s returned %s", model_id, type(output).__name__)
        return output
