"""
Readable and writable byte streams for the stream bridge.

The model is a small event-driven one on top of asyncio:

- ``ReadableStream`` emits ``data(chunk)`` for each chunk, then ``end``.
  A pump task reads ahead at most one chunk and only emits while the
  stream is flowing, so ``pause()`` takes effect before the next event.
- ``WritableStream.write(chunk)`` queues a copy of the chunk and returns
  False once the queued bytes reach ``high_water_mark``. After such a
  False return, ``drain`` is emitted when the queue has been flushed.

Errors raised while reading or writing are emitted as ``error(exc)``
events when someone listens for them and re-raised otherwise.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable
from contextlib import aclosing
from pathlib import Path
from typing import Any

import aiofiles

from .config import DEFAULT_HIGH_WATER_MARK, DEFAULT_READ_CHUNK_SIZE
from .exceptions import StreamClosedError

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventSource:
    """Minimal named-event listener registry."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: str, listener: Listener) -> EventSource:
        """Register ``listener`` for every ``event``."""
        self._listeners.setdefault(event, []).append(listener)
        return self

    def once(self, event: str, listener: Listener) -> EventSource:
        """Register ``listener`` for the next ``event`` only."""

        def wrapper(*args: Any) -> Any:
            self.off(event, wrapper)
            return listener(*args)

        wrapper.listener = listener  # type: ignore[attr-defined]
        return self.on(event, wrapper)

    def off(self, event: str, listener: Listener) -> EventSource:
        """Remove the first registration of ``listener`` for ``event``."""
        listeners = self._listeners.get(event, [])
        for i, registered in enumerate(listeners):
            if registered == listener or getattr(registered, "listener", None) == listener:
                del listeners[i]
                break
        return self

    def emit(self, event: str, *args: Any) -> bool:
        """Call the listeners of ``event`` in registration order.

        Returns:
            True if the event had listeners
        """
        listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            listener(*args)
        return bool(listeners)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))


class ReadableStream(EventSource):
    """Base class for chunk sources.

    Subclasses implement ``_read_chunks()``. The pump starts when the first
    ``data`` listener is attached, or explicitly via ``start()``.
    """

    def __init__(self, name: str | None = None) -> None:
        super().__init__()
        self.name = name or type(self).__name__
        self._flowing = asyncio.Event()
        self._flowing.set()
        self._task: asyncio.Task[None] | None = None
        self.ended = False
        self.error: BaseException | None = None

    @property
    def is_paused(self) -> bool:
        return not self._flowing.is_set()

    def pause(self) -> None:
        if self._flowing.is_set():
            self._flowing.clear()
            logger.debug(f"{self.name} paused")

    def resume(self) -> None:
        if not self._flowing.is_set():
            self._flowing.set()
            logger.debug(f"{self.name} resumed")

    def on(self, event: str, listener: Listener) -> EventSource:
        super().on(event, listener)
        if event == "data":
            self.start()
        return self

    def start(self) -> asyncio.Task[None]:
        """Start the pump task if it is not running yet, and return it."""
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._pump())
        return self._task

    async def wait_ended(self) -> None:
        """Wait until ``end`` was emitted; raise the read error if there was one."""
        await self.start()
        if self.error is not None:
            raise self.error

    def destroy(self) -> None:
        """Stop reading. No further events are emitted."""
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def aclose(self) -> None:
        """Stop reading and wait until the pump has released the source."""
        self.destroy()
        if self._task is not None:
            await asyncio.wait([self._task])

    async def _pump(self) -> None:
        try:
            async with aclosing(self._read_chunks()) as chunks:
                async for chunk in chunks:
                    await self._flowing.wait()
                    self.emit("data", chunk)
            await self._flowing.wait()
        except Exception as e:
            self.error = e
            if not self.emit("error", e):
                raise
            return
        self.ended = True
        self.emit("end")

    def _read_chunks(self) -> AsyncIterator[bytearray]:
        raise NotImplementedError


class IterableReadStream(ReadableStream):
    """Readable stream over an in-memory (or async) iterable of chunks.

    ``str`` chunks are encoded as UTF-8. Every chunk is emitted as a fresh
    ``bytearray`` so transforms can modify it in place.
    """

    def __init__(self, chunks: Iterable[Any] | AsyncIterable[Any], name: str | None = None) -> None:
        super().__init__(name)
        self._chunks = chunks

    async def _read_chunks(self) -> AsyncIterator[bytearray]:
        if isinstance(self._chunks, AsyncIterable):
            async for chunk in self._chunks:
                yield _to_bytearray(chunk)
        else:
            for chunk in self._chunks:
                yield _to_bytearray(chunk)


class FileReadStream(ReadableStream):
    """Readable stream over a file, read with aiofiles."""

    def __init__(
        self,
        path: str | Path,
        chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
        name: str | None = None,
    ) -> None:
        super().__init__(name or f"FileReadStream({path})")
        self.path = Path(path)
        self.chunk_size = chunk_size

    async def _read_chunks(self) -> AsyncIterator[bytearray]:
        async with aiofiles.open(self.path, "rb") as f:
            while True:
                data = await f.read(self.chunk_size)
                if not data:
                    break
                yield bytearray(data)


def _to_bytearray(chunk: Any) -> bytearray:
    if isinstance(chunk, str):
        return bytearray(chunk.encode("utf-8"))
    return bytearray(chunk)


class WritableStream(EventSource):
    """Base class for chunk sinks.

    Subclasses implement ``_write_chunk()`` and optionally ``_open()`` and
    ``_close()``. Chunks are copied on ``write()``, so producers may reuse
    their buffers right away.
    """

    def __init__(self, high_water_mark: int = DEFAULT_HIGH_WATER_MARK, name: str | None = None) -> None:
        super().__init__()
        self.name = name or type(self).__name__
        self.high_water_mark = high_water_mark
        self._queue: deque[bytes] = deque()
        self._buffered = 0
        self._need_drain = False
        self._ending = False
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.finished = False
        self.error: BaseException | None = None

    @property
    def writable_length(self) -> int:
        """Bytes queued but not yet flushed."""
        return self._buffered

    def write(self, chunk: Any) -> bool:
        """Queue ``chunk`` for writing.

        Returns:
            False if the queue is at or above ``high_water_mark``; wait for
            ``drain`` before writing more

        Raises:
            StreamClosedError: If ``end()`` was already called
        """
        if self._ending:
            raise StreamClosedError(self.name)
        data = bytes(chunk)
        self._queue.append(data)
        self._buffered += len(data)
        self._ensure_task()
        self._wakeup.set()

        if self._buffered >= self.high_water_mark:
            self._need_drain = True
            return False
        return True

    def end(self, chunk: Any = None) -> None:
        """Write an optional last chunk, then close once everything is flushed."""
        if chunk is not None:
            self.write(chunk)
        self._ending = True
        self._ensure_task()
        self._wakeup.set()

    async def wait_closed(self) -> None:
        """Wait until the stream is flushed and closed; raise the write error if any."""
        await self._ensure_task()
        if self.error is not None:
            raise self.error

    def _ensure_task(self) -> asyncio.Task[None]:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._flush_loop())
        return self._task

    async def _flush_loop(self) -> None:
        try:
            await self._open()
            try:
                while True:
                    if not self._queue:
                        if self._ending:
                            break
                        if self._need_drain:
                            self._need_drain = False
                            self.emit("drain")
                            continue
                        self._wakeup.clear()
                        await self._wakeup.wait()
                        continue
                    data = self._queue.popleft()
                    await self._write_chunk(data)
                    self._buffered -= len(data)
            finally:
                await self._close()
        except Exception as e:
            self.error = e
            if not self.emit("error", e):
                raise
            return
        self.finished = True
        self.emit("finish")

    async def _open(self) -> None:
        pass

    async def _write_chunk(self, data: bytes) -> None:
        raise NotImplementedError

    async def _close(self) -> None:
        pass


class MemoryWriteStream(WritableStream):
    """Writable stream collecting chunks in memory.

    ``delay`` makes every flushed chunk take that many seconds, which is
    handy for exercising backpressure.
    """

    def __init__(
        self,
        high_water_mark: int = DEFAULT_HIGH_WATER_MARK,
        delay: float = 0.0,
        name: str | None = None,
    ) -> None:
        super().__init__(high_water_mark, name)
        self.delay = delay
        self.chunks: list[bytes] = []

    async def _write_chunk(self, data: bytes) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.chunks.append(data)

    def getvalue(self) -> bytes:
        return b"".join(self.chunks)


class FileWriteStream(WritableStream):
    """Writable stream to a file, written with aiofiles.

    The file is created or truncated when the first chunk is flushed
    (or on ``end()`` when nothing was written).
    """

    def __init__(
        self,
        path: str | Path,
        high_water_mark: int = DEFAULT_HIGH_WATER_MARK,
        name: str | None = None,
    ) -> None:
        super().__init__(high_water_mark, name or f"FileWriteStream({path})")
        self.path = Path(path)
        self._file: Any = None

    async def _open(self) -> None:
        self._file = await aiofiles.open(self.path, "wb")

    async def _write_chunk(self, data: bytes) -> None:
        await self._file.write(data)

    async def _close(self) -> None:
        if self._file is not None:
            await self._file.close()
            self._file = None
