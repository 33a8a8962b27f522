"""Shared pytest configuration and fixtures for the isbn_scanner test suite."""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from PIL import Image

PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


def pytest_addoption(parser):
    parser.addoption(
        "--run-hardware",
        action="store_true",
        default=False,
        help="Run tests that need a real camera",
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-hardware"):
        return
    skip_hardware = pytest.mark.skip(reason="Need --run-hardware option to run")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip_hardware)


# =============================================================================
# Fakes
# =============================================================================

class StubCatalog:
    """Catalog returning canned metadata per identifier and recording calls."""

    def __init__(self, name: str, answers: Optional[Dict[str, Any]] = None, delay: float = 0.0,
                 error: Optional[Exception] = None):
        self.name = name
        self.answers = answers or {}
        self.delay = delay
        self.error = error
        self.calls: List[str] = []

    async def lookup(self, isbn: str) -> Optional[Dict[str, Any]]:
        import asyncio

        self.calls.append(isbn)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.answers.get(isbn)


class MemoryLibrary:
    def __init__(self, records: Optional[List[Dict[str, Any]]] = None):
        self.saved: List[Dict[str, Any]] = list(records or [])
        self.add_calls = 0

    def records(self) -> List[Dict[str, Any]]:
        return list(self.saved)

    def add(self, record: Dict[str, Any]) -> Dict[str, Any]:
        self.add_calls += 1
        self.saved.append(dict(record))
        return record


class FakeStream:
    def __init__(self, image: Optional[Image.Image] = None, error: Optional[Exception] = None):
        self.image = image if image is not None else Image.new("RGB", (320, 240), "white")
        self.error = error
        self.release_calls = 0

    async def snapshot(self) -> Image.Image:
        if self.error is not None:
            raise self.error
        return self.image

    def release(self) -> None:
        self.release_calls += 1


class FakeCamera:
    def __init__(self, stream: Optional[FakeStream] = None, error: Optional[Exception] = None):
        self.stream = stream or FakeStream()
        self.error = error
        self.acquire_calls = 0

    async def acquire(self, origin: Optional[str] = None) -> FakeStream:
        self.acquire_calls += 1
        if self.error is not None:
            raise self.error
        return self.stream


class FakeOcr:
    def __init__(self, text: str = "", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls = 0

    async def recognize(self, image: Image.Image) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.text


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def white_image() -> Image.Image:
    return Image.new("RGB", (400, 300), "white")


@pytest.fixture
def memory_library() -> MemoryLibrary:
    return MemoryLibrary()
