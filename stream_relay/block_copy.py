"""
Fixed-buffer synchronous copy between two file handles.

The copier reads the source in chunks of exactly the buffer's capacity,
writing each full chunk to the destination, then writes the final partial
chunk (the tail). An optional transform sees every chunk, in place, before
it is written.

Nothing here catches I/O errors: failures of the read, write, stat or close
primitives propagate to the caller unmodified, and handles are left open
when that happens. Wrap calls in your own error handling.

Usage:

    >>> buffer = bytearray(1024 * 1024)
    >>> with open("in.bin", "rb") as src, open("out.bin", "wb") as dst:
    ...     copy(src, dst, buffer, auto_close=False)
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import CopyConfig
from .exceptions import BufferValidationError
from .handles import Handle, as_handle

logger = logging.getLogger(__name__)

ChunkTransform = Callable[[memoryview], Any]


@dataclass
class CopyStats:
    """Counters collected during a single copy."""

    reads: int = 0
    writes: int = 0
    bytes_written: int = 0
    full_chunks: int = 0
    tail_size: int = 0


def _byte_view(buffer: Any) -> memoryview:
    """Return a flat, writable byte view over ``buffer``."""
    try:
        view = memoryview(buffer)
    except TypeError as e:
        raise BufferValidationError(
            f"Buffer of type {type(buffer).__name__} does not support the buffer protocol"
        ) from e
    if view.readonly:
        view.release()
        raise BufferValidationError("Buffer must be writable")
    if view.ndim != 1 or view.format != "B":
        view = view.cast("B")
    if view.nbytes == 0:
        view.release()
        raise BufferValidationError("Buffer capacity must be greater than zero", capacity=0)
    return view


class BlockCopier:
    """Copies one handle into another through a caller-owned buffer.

    The buffer is reused for every chunk. A transform must not keep a
    reference to a chunk past its own call and expect the contents to stay
    the same.
    """

    def __init__(
        self,
        source: Any,
        dest: Any,
        buffer: Any,
        auto_close: bool = True,
        transform: ChunkTransform | None = None,
    ) -> None:
        """Initialize a copy session.

        Args:
            source: Readable fd, binary file object or ``Handle``
            dest: Writable fd, binary file object or ``Handle``
            buffer: Writable bytes-like object used as the working buffer
            auto_close: Close dest then source once the copy completes
            transform: Optional callable invoked with each chunk before it
                is written; modifications must be made in place
        """
        view = _byte_view(buffer)
        self.capacity = view.nbytes
        view.release()

        self.source: Handle = as_handle(source)
        self.dest: Handle = as_handle(dest)
        self.buffer = buffer
        self.auto_close = auto_close
        self.transform = transform

    def run(self) -> CopyStats:
        """Copy everything from the source's current position to its end.

        The amount to copy, and therefore the tail length, is measured once
        up front. The source must not grow or shrink while the copy runs.

        Returns:
            Counters for the reads and writes performed
        """
        stats = CopyStats()
        start = self.source.position()
        size = max(self.source.size() - start, 0)
        tail = size % self.capacity
        stats.tail_size = tail

        logger.debug(
            "Starting block copy",
            extra={"source": repr(self.source), "dest": repr(self.dest),
                   "size": size, "capacity": self.capacity},
        )

        offset = start
        view = _byte_view(self.buffer)
        while True:
            count = self.source.readinto(view, offset)
            stats.reads += 1
            if count != self.capacity:
                break
            offset += count
            if self.transform is not None:
                self.transform(view)
            self._write(view, stats)
            stats.full_chunks += 1

        if tail:
            if count != tail:
                logger.warning(
                    f"Final read returned {count} bytes, expected tail of {tail}; "
                    "source changed during copy"
                )
            chunk = view[:tail]
            if self.transform is not None:
                self.transform(chunk)
            self._write(chunk, stats)
            offset += tail

        # Leave the source cursor where an implicit-cursor read would have
        self.source.seek(offset)

        if self.auto_close:
            self.dest.close()
            self.source.close()

        logger.debug(
            "Block copy finished",
            extra={"reads": stats.reads, "writes": stats.writes,
                   "bytes_written": stats.bytes_written},
        )
        return stats

    def _write(self, chunk: memoryview, stats: CopyStats) -> None:
        self.dest.write(chunk)
        stats.writes += 1
        stats.bytes_written += chunk.nbytes


def copy(
    source: Any,
    dest: Any,
    buffer: Any,
    auto_close: bool = True,
    transform: ChunkTransform | None = None,
) -> CopyStats:
    """Synchronously copy ``source`` into ``dest`` using ``buffer``.

    Args:
        source: Readable fd, binary file object or ``Handle``
        dest: Writable fd, binary file object or ``Handle``
        buffer: Pre-allocated writable buffer (capacity > 0)
        auto_close: Close both handles when done (dest first)
        transform: Optional in-place transform applied to every chunk,
            including the final partial one, before it is written

    Returns:
        Counters for the reads and writes performed

    Raises:
        BufferValidationError: If the buffer is empty or read-only
    """
    return BlockCopier(source, dest, buffer, auto_close, transform).run()


def copy_file(
    src_path: str | Path,
    dst_path: str | Path,
    buffer_size: int | None = None,
    transform: ChunkTransform | None = None,
) -> CopyStats:
    """Copy a file by path, creating or truncating the destination.

    Args:
        src_path: File to read
        dst_path: File to write
        buffer_size: Working buffer capacity (default from ``CopyConfig.from_env()``)
        transform: Optional in-place chunk transform

    Returns:
        Counters for the reads and writes performed
    """
    if buffer_size is None:
        buffer_size = CopyConfig.from_env().buffer_size
    buffer = bytearray(buffer_size)

    binary = getattr(os, "O_BINARY", 0)
    read_fd = os.open(src_path, os.O_RDONLY | binary)
    try:
        write_fd = os.open(dst_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC | binary, 0o666)
    except OSError:
        os.close(read_fd)
        raise

    try:
        return copy(read_fd, write_fd, buffer, auto_close=False, transform=transform)
    finally:
        os.close(write_fd)
        os.close(read_fd)
