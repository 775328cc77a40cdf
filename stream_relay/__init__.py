"""
Stream Relay

Low-level copying utilities for files and byte streams.

Provides:
- Fixed-buffer synchronous copy between file handles with an optional
  in-place chunk transform
- Flow-controlled bridge between a readable and a writable stream that
  honors sink backpressure and lets transforms hold chunks while they do
  asynchronous work

Usage:

    >>> from stream_relay import copy, copy_file
    >>> copy_file("in.bin", "out.bin", buffer_size=64 * 1024)
    ...
    >>> buffer = bytearray(4096)
    >>> with open("in.bin", "rb") as src, open("out.bin", "wb") as dst:
    ...     copy(src, dst, buffer, auto_close=False, transform=lambda chunk: None)

Streams:

    >>> from stream_relay import FileReadStream, FileWriteStream, bridge
    >>> def invert(chunk, control):
    ...     for i, b in enumerate(chunk):
    ...         chunk[i] = ~b & 0xFF
    >>> await bridge(FileReadStream("in.bin"), FileWriteStream("out.bin"), invert).wait()
"""

from .block_copy import BlockCopier, CopyStats, copy, copy_file
from .bridge import ChunkControl, ChunkState, PauseReason, StreamBridge, bridge, pipe_file
from .config import BridgeConfig, CopyConfig
from .exceptions import (
    BufferValidationError,
    StreamClosedError,
    StreamRelayError,
    TransformTimeoutError,
)
from .handles import FdHandle, FileObjectHandle, Handle, as_handle
from .logging_utils import configure_structured_logging
from .streams import (
    EventSource,
    FileReadStream,
    FileWriteStream,
    IterableReadStream,
    MemoryWriteStream,
    ReadableStream,
    WritableStream,
)

__all__ = [
    # Block copy
    "BlockCopier",
    "CopyStats",
    "copy",
    "copy_file",
    # Handles
    "FdHandle",
    "FileObjectHandle",
    "Handle",
    "as_handle",
    # Bridge
    "ChunkControl",
    "ChunkState",
    "PauseReason",
    "StreamBridge",
    "bridge",
    "pipe_file",
    # Streams
    "EventSource",
    "FileReadStream",
    "FileWriteStream",
    "IterableReadStream",
    "MemoryWriteStream",
    "ReadableStream",
    "WritableStream",
    # Config
    "BridgeConfig",
    "CopyConfig",
    # Exceptions
    "BufferValidationError",
    "StreamClosedError",
    "StreamRelayError",
    "TransformTimeoutError",
    # Logging
    "configure_structured_logging",
]

__version__ = "0.1.0"
