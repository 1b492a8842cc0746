"""Shared fixtures and fakes for site_uploader tests."""
import asyncio
import io
import os
from typing import Dict, Iterable

import pytest
from PIL import Image

from site_uploader.errors import UploadFailure
from site_uploader.models import StoredObject


@pytest.fixture(autouse=True)
def _restore_environ():
    """Undo os.environ writes made by code under test (e.g. .env loading)."""
    saved = dict(os.environ)
    yield
    os.environ.clear()
    os.environ.update(saved)


def make_image_bytes(fmt="PNG", size=(32, 32), color=(200, 30, 30), mode="RGB", **save_kwargs) -> bytes:
    """Solid-color image encoded in ``fmt``."""
    if mode == "RGBA" and len(color) == 3:
        color = color + (128,)
    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


def make_noise_bytes(fmt="PNG", size=(400, 300), **save_kwargs) -> bytes:
    """Random noise image; compresses poorly, so size limits actually matter."""
    img = Image.effect_noise(size, 64).convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


class FakeStorage:
    """In-memory IStorageClient that records uploads and concurrency."""

    def __init__(
        self,
        fail_substrings: Iterable[str] = (),
        message: str = "Network request failed",
        delay: float = 0.0,
    ):
        self.fail_substrings = list(fail_substrings)
        self.message = message
        self.delay = delay
        self.uploads: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.active = 0
        self.peak_active = 0

    async def upload(self, destination_path, payload, content_type="image/jpeg"):
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if any(s in destination_path for s in self.fail_substrings):
                raise UploadFailure(self.message)
            self.uploads[destination_path] = payload
            self.content_types[destination_path] = content_type
            return StoredObject(destination_path, f"https://storage.test/{destination_path}?token=abc")
        finally:
            self.active -= 1

    async def create_signed_url(self, path, ttl_seconds):
        return f"https://storage.test/{path}?ttl={ttl_seconds}"


@pytest.fixture
def png_bytes():
    return make_image_bytes("PNG")


@pytest.fixture
def fake_storage():
    return FakeStorage()
