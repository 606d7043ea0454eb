import asyncio
from datetime import datetime, timedelta, timezone
from io import BytesIO

import pytest
from PIL import Image

from core.config import ForgeConfig
from core.history import HistoryCache, HistoryItem
from core.storage import MemoryStore
from core.uploads import UploadRegistry
from runtime.upscale_client import Dimensions, UpscaleResponse

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class FakeBackend:
    """Upscale backend whose calls block until released one by one."""

    def __init__(self, response=None, error=None, hold=True):
        self.response = response or UpscaleResponse(
            success=True,
            image_url="https://cdn.test/result.png",
            input_url="https://cdn.test/source.png",
            upscaled_dimensions=Dimensions(width=128, height=96),
            remaining_upscales=42,
        )
        self.error = error
        self.hold = hold
        self.calls = []

    async def upscale(self, request):
        gate = asyncio.Event()
        self.calls.append((request, gate))
        if self.hold:
            await gate.wait()
        if self.error is not None:
            raise self.error
        return self.response

    def release(self, index=-1):
        self.calls[index][1].set()


class FakeProbe:
    def __init__(self, dims=None, gate=None):
        self.dims = dims
        self.gate = gate
        self.urls = []

    async def dimensions(self, url):
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        return self.dims


async def settle(rounds=20):
    """Let pending tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def png_bytes(width=32, height=24, color=(200, 40, 40)):
    buffer = BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, "PNG")
    return buffer.getvalue()


@pytest.fixture
def config(tmp_path):
    config = ForgeConfig()
    config.data_dir = tmp_path / "forge"
    config.progress_interval = 60.0
    return config


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def history(store, config, clock):
    return HistoryCache(store, config, now=clock)


@pytest.fixture
def registry(config):
    return UploadRegistry(config.uploads_dir, config)


@pytest.fixture
def make_item():
    counter = iter(range(1, 100000))

    def factory(timestamp=T0, **fields):
        n = next(counter)
        defaults = dict(
            id=f"item-{n}",
            job_id=f"job-{n}",
            filename=f"image-{n}.png",
            result_url=f"https://cdn.test/{n}.png",
            scale=2,
            image_type="photo",
            timestamp=timestamp,
        )
        defaults.update(fields)
        return HistoryItem(**defaults)

    return factory
