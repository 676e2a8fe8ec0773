# tests/test_image_provider.py
from __future__ import annotations

import time
from unittest.mock import MagicMock

import httpx
import pytest
from replicate.exceptions import ModelError

from jobs.errors import ProviderError, TransientNetworkError
from services.image_provider import ReplicateProvider

MODEL = "google/nano-banana"


@pytest.mark.asyncio
async def test_run_returns_raw_output():
    client = MagicMock()
    client.run.return_value = ["https://replicate.delivery/out.png"]
    provider = ReplicateProvider(client, timeout=5, attempts=1)

    output = await provider.run(MODEL, {"prompt": "portrait"})

    assert output == ["https://replicate.delivery/out.png"]
    client.run.assert_called_once_with(MODEL, input={"prompt": "portrait"})


@pytest.mark.asyncio
async def test_failed_prediction_is_not_retried():
    client = MagicMock()
    client.run.side_effect = ModelError(MagicMock(error="NSFW content detected"))
    provider = ReplicateProvider(client, timeout=5, attempts=3)

    with pytest.raises(ProviderError):
        await provider.run(MODEL, {"prompt": "portrait"})

    assert client.run.call_count == 1


@pytest.mark.asyncio
async def test_transport_failures_are_retried():
    client = MagicMock()
    client.run.side_effect = [httpx.ConnectError("reset"), ["https://replicate.delivery/out.png"]]
    provider = ReplicateProvider(client, timeout=5, attempts=2)

    assert await provider.run(MODEL, {"prompt": "portrait"}) == ["https://replicate.delivery/out.png"]
    assert client.run.call_count == 2


@pytest.mark.asyncio
async def test_slow_prediction_times_out():
    client = MagicMock()
    client.run.side_effect = lambda *args, **kwargs: time.sleep(0.5)
    provider = ReplicateProvider(client, timeout=0.05, attempts=1)

    with pytest.raises(TransientNetworkError, match="timed out"):
        await provider.run(MODEL, {"prompt": "portrait"})
