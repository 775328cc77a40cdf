"""
File handle adapters for block copies.

A ``Handle`` is the minimal surface the block copier needs from an open
resource: its size, its cursor position, positioned reads into a caller
buffer, sequential writes and close. Raw file descriptors and binary file
objects are adapted to it by ``as_handle()``.

Reads take an explicit offset so the copier never depends on a cursor that
someone else might move. Errors from the underlying primitives are not
caught here.
"""

from __future__ import annotations

import io
import os
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Handle(Protocol):
    """Minimal file handle used by the block copier."""

    def size(self) -> int: ...

    def position(self) -> int: ...

    def seek(self, offset: int) -> None: ...

    def readinto(self, view: memoryview, offset: int) -> int: ...

    def write(self, view: memoryview) -> int: ...

    def close(self) -> None: ...


class FdHandle:
    """Handle over a raw OS file descriptor."""

    def __init__(self, fd: int) -> None:
        self.fd = fd

    def size(self) -> int:
        return os.fstat(self.fd).st_size

    def position(self) -> int:
        return os.lseek(self.fd, 0, os.SEEK_CUR)

    def seek(self, offset: int) -> None:
        os.lseek(self.fd, offset, os.SEEK_SET)

    def readinto(self, view: memoryview, offset: int) -> int:
        if hasattr(os, "preadv"):
            return os.preadv(self.fd, [view], offset)
        # No positioned vectored read on this platform
        os.lseek(self.fd, offset, os.SEEK_SET)
        data = os.read(self.fd, len(view))
        view[: len(data)] = data
        return len(data)

    def write(self, view: memoryview) -> int:
        return os.write(self.fd, view)

    def close(self) -> None:
        os.close(self.fd)

    def __repr__(self) -> str:
        return f"FdHandle(fd={self.fd})"


class FileObjectHandle:
    """Handle over a binary file object (``open(..., 'rb')``, ``BytesIO``...)."""

    def __init__(self, file: Any) -> None:
        self.file = file

    def size(self) -> int:
        current = self.file.tell()
        end = self.file.seek(0, io.SEEK_END)
        self.file.seek(current)
        return end

    def position(self) -> int:
        return self.file.tell()

    def seek(self, offset: int) -> None:
        self.file.seek(offset)

    def readinto(self, view: memoryview, offset: int) -> int:
        self.file.seek(offset)
        return self.file.readinto(view) or 0

    def write(self, view: memoryview) -> int:
        return self.file.write(view)

    def close(self) -> None:
        self.file.close()

    def __repr__(self) -> str:
        name = getattr(self.file, "name", type(self.file).__name__)
        return f"FileObjectHandle({name!r})"


def as_handle(obj: Any) -> Handle:
    """Adapt a file descriptor, binary file object or ``Handle`` to a ``Handle``.

    Args:
        obj: An int file descriptor, an object with ``readinto``/``write``,
            or something already implementing ``Handle``

    Returns:
        A ``Handle`` wrapping ``obj``

    Raises:
        TypeError: If ``obj`` cannot be used as a file handle
    """
    if isinstance(obj, Handle):
        return obj
    if isinstance(obj, int) and not isinstance(obj, bool):
        return FdHandle(obj)
    if hasattr(obj, "readinto") or hasattr(obj, "write"):
        return FileObjectHandle(obj)
    raise TypeError(f"Cannot use {type(obj).__name__} as a file handle")
