"""
Shared test configuration and fixtures.

Provides helpers for creating source files with known content and
recording handles that log what the block copier does to them.
"""

import io
import logging
from collections.abc import Callable
from pathlib import Path

import pytest

from stream_relay.handles import FileObjectHandle

logger = logging.getLogger(__name__)


def make_payload(size: int) -> bytes:
    """Deterministic, non-repeating-per-chunk test content."""
    return bytes((i * 7 + 3) % 256 for i in range(size))


class RecordingHandle(FileObjectHandle):
    """In-memory handle that logs reads, writes and closes into a shared list."""

    def __init__(self, data: bytes = b"", events: list | None = None, label: str = "handle"):
        super().__init__(io.BytesIO(data))
        self.events = events if events is not None else []
        self.label = label
        self.write_sizes: list[int] = []

    def readinto(self, view: memoryview, offset: int) -> int:
        count = super().readinto(view, offset)
        self.events.append(("read", self.label, count))
        return count

    def write(self, view: memoryview) -> int:
        self.write_sizes.append(len(view))
        self.events.append(("write", self.label, len(view)))
        return super().write(view)

    def close(self) -> None:
        self.events.append(("close", self.label))
        # Keep the BytesIO readable for assertions

    def getvalue(self) -> bytes:
        return self.file.getvalue()


@pytest.fixture
def make_file(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing ``content`` (or ``size`` bytes of payload) to a temp file."""

    def _make(name: str = "source.bin", content: bytes | None = None, size: int = 0) -> Path:
        path = tmp_path / name
        path.write_bytes(content if content is not None else make_payload(size))
        logger.debug(f"Created {path} ({path.stat().st_size} bytes)")
        return path

    return _make


@pytest.fixture
def events() -> list:
    """Shared event log for recording handles."""
    return []


@pytest.fixture
def recording(events: list) -> Callable[..., RecordingHandle]:
    """Factory for recording handles sharing the ``events`` log."""

    def _make(data: bytes = b"", label: str = "dest") -> RecordingHandle:
        return RecordingHandle(data, events, label)

    return _make


@pytest.fixture
def payload() -> Callable[[int], bytes]:
    return make_payload
