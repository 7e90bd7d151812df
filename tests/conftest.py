# =============================================================================
# tests/conftest.py - Pytest Configuration
# =============================================================================
# Shared fixtures: test images, an isolated config, and a scripted enhancer
# that stands in for the remote service.
# =============================================================================

import io
import asyncio

import pytest
from PIL import Image

from realty_enhance.cancellation import run_cancellable
from realty_enhance.config import Config, UploaderConfig, reset_config
from realty_enhance.enhance_client import EnhanceResult
from realty_enhance.presets import cost
from realty_enhance.records import ImageQueue, ImageRecord


def make_jpeg(width=64, height=48, color=(200, 120, 40)) -> bytes:
    """Create a small in-memory JPEG"""
    img = Image.new('RGB', (width, height), color=color)
    buf = io.BytesIO()
    img.save(buf, format='JPEG')
    return buf.getvalue()


def make_png(width=32, height=32) -> bytes:
    img = Image.new('RGBA', (width, height), color=(0, 128, 255, 128))
    buf = io.BytesIO()
    img.save(buf, format='PNG')
    return buf.getvalue()


class ScriptedEnhancer:
    """
    Fake remote service

    ``outcomes`` is consumed one entry per call: "ok" succeeds, "hang" waits
    until cancelled, an exception instance is raised.
    """

    def __init__(self, outcomes=None, balance=10):
        self.outcomes = list(outcomes or [])
        self.balance = balance
        self.calls = []

    async def enhance(self, record, settings, token):
        self.calls.append(record.id)
        outcome = self.outcomes.pop(0) if self.outcomes else "ok"
        if isinstance(outcome, Exception):
            raise outcome
        if outcome == "hang":
            return await run_cancellable(asyncio.Event().wait(), token)
        self.balance -= cost(settings.preset)
        return EnhanceResult(
            url=f"https://cdn.example.com/{record.id}.jpg",
            remaining_credits=self.balance,
        )


@pytest.fixture(autouse=True)
def isolated_config():
    """Fresh global config for every test"""
    config = Config()
    reset_config(config)
    yield config
    reset_config(None)


@pytest.fixture
def jpeg_bytes():
    return make_jpeg()


@pytest.fixture
def image_queue(tmp_path):
    queue = ImageQueue(UploaderConfig(max_images=5, preview_dir=tmp_path / "previews"))
    yield queue


@pytest.fixture
def make_records():
    """Factory for plain records without previews"""
    def _make(count):
        return [ImageRecord(source_bytes=make_jpeg(), filename=f"photo_{i}.jpg") for i in range(count)]
    return _make
