"""
Flow-controlled bridge from a readable stream to a writable stream.

Every ``data`` chunk of the source is written to the sink, optionally after
passing through a transform. Two things can hold the source paused:

- backpressure: ``sink.write()`` returned False; cleared by ``drain``
- a transform: it called ``control(True)`` (or returned an awaitable);
  cleared when it calls ``control(False)`` (or the awaitable completes)

Both are tracked separately in ``StreamBridge.paused_by`` and the source is
only resumed once neither holds it.

Transform protocol::

    def transform(chunk: bytearray, control: ChunkControl) -> None | bytes | Awaitable:
        ...

- Synchronous transforms modify ``chunk`` in place (or return replacement
  bytes) and ignore ``control``; the chunk is forwarded on return.
- Transforms that need to do work out of band call ``control(True)`` to
  hold the chunk and later ``control(False)`` to forward it and resume.
  ``control(False)`` before any ``control(True)`` is ignored.
- Coroutine transforms are held until they complete.

Usage:

    >>> source = FileReadStream("in.bin")
    >>> sink = FileWriteStream("out.bin")
    >>> await bridge(source, sink, invert_bytes).wait()
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import uuid
from collections.abc import Callable
from enum import Enum, Flag, auto
from functools import partial
from pathlib import Path
from typing import Any

from .config import BridgeConfig
from .exceptions import StreamRelayError, TransformTimeoutError
from .logging_utils import RelayLoggerAdapter, get_relay_logger
from .streams import FileReadStream, FileWriteStream, ReadableStream, WritableStream

logger = get_relay_logger("bridge")

StreamTransform = Callable[[bytearray, "ChunkControl"], Any]


class PauseReason(Flag):
    """Why the source is currently paused."""

    NONE = 0
    BACKPRESSURE = auto()
    TRANSFORM = auto()


class ChunkState(Enum):
    IDLE = "idle"
    TRANSFORM_PENDING = "transform_pending"  # transform running, no decision yet
    EXTERNALLY_PAUSED = "externally_paused"  # transform holds the chunk
    RESUMING = "resuming"  # transform released the chunk
    FORWARDED = "forwarded"


class ChunkControl:
    """Stop/resume switch handed to the transform together with one chunk.

    Call ``control(True)`` to hold the chunk and pause the source, then
    ``control(False)`` to forward it and resume. Each call returns whether
    the request was accepted.
    """

    def __init__(self, bridge: StreamBridge, chunk: Any) -> None:
        self._bridge = bridge
        self.chunk = chunk
        self.state = ChunkState.IDLE
        self.triggered = False
        self.task: asyncio.Future[Any] | None = None  # set for awaitable transforms
        self._timer: asyncio.TimerHandle | None = None

    def __call__(self, stop: bool) -> bool:
        if not self.triggered:
            if not stop:
                # Resuming before ever stopping means nothing
                self._bridge.log.debug("Resume before stop ignored")
                return False
            self.triggered = True
            self.state = ChunkState.EXTERNALLY_PAUSED
            self._bridge._hold(self)
            return True

        if stop or self.state is not ChunkState.EXTERNALLY_PAUSED:
            return False

        self.state = ChunkState.RESUMING
        self._bridge._release_held(self)
        self.state = ChunkState.FORWARDED
        return True

    def __repr__(self) -> str:
        return f"ChunkControl(state={self.state.value}, size={len(self.chunk)})"


class StreamBridge:
    """Pipes a ``ReadableStream`` into a ``WritableStream``.

    Listeners are attached by ``attach()`` and detached when the source
    ends or fails. Errors are never retried; ``wait()`` re-raises them.
    """

    def __init__(
        self,
        source: ReadableStream,
        sink: WritableStream,
        transform: StreamTransform | None = None,
        config: BridgeConfig | None = None,
    ) -> None:
        self.source = source
        self.sink = sink
        self.transform = transform
        self.config = config or BridgeConfig()
        self.bridge_id = uuid.uuid4().hex[:12]
        self.log = RelayLoggerAdapter(logger, {"bridge_id": self.bridge_id})

        self.paused_by = PauseReason.NONE
        self.current: ChunkControl | None = None
        self.chunks_forwarded = 0
        self.bytes_forwarded = 0
        self.closed = False
        self._done: asyncio.Future[None] | None = None

    def attach(self) -> StreamBridge:
        """Start forwarding. Must be called from a running event loop."""
        self._done = asyncio.get_running_loop().create_future()
        self.source.once("end", self._on_end)
        self.source.on("error", self._on_error)
        self.sink.on("drain", self._on_drain)
        self.sink.on("error", self._on_error)
        self.source.on("data", self._on_data)
        self.log.debug(f"Bridge attached: {self.source.name} -> {self.sink.name}")
        return self

    async def wait(self) -> None:
        """Wait until the source ended and every chunk was handed to the sink.

        Raises:
            TransformTimeoutError: If a transform held a chunk too long
            Exception: Any error emitted by the source or the sink
        """
        if self._done is None:
            raise RuntimeError("Bridge is not attached")
        await self._done

    def _on_data(self, chunk: bytearray) -> None:
        if self.closed:
            return
        if self.transform is None:
            self._forward(chunk)
            return

        control = ChunkControl(self, chunk)
        self.current = control
        control.state = ChunkState.TRANSFORM_PENDING
        result = self.transform(chunk, control)

        if inspect.isawaitable(result):
            control(True)
            control.task = asyncio.ensure_future(result)
            control.task.add_done_callback(partial(self._on_transform_done, control))
            return

        if isinstance(result, (bytes, bytearray, memoryview)):
            self._replace_chunk(control, result)
        if not control.triggered:
            control.state = ChunkState.FORWARDED
            self.current = None
            self._forward(control.chunk)

    def _on_transform_done(self, control: ChunkControl, task: asyncio.Future[Any]) -> None:
        if self.closed:
            return
        if task.cancelled():
            self._fail(StreamRelayError("Transform was cancelled", {"bridge_id": self.bridge_id}))
            return
        exc = task.exception()
        if exc is not None:
            self._fail(exc)
            return
        result = task.result()
        if isinstance(result, (bytes, bytearray, memoryview)):
            self._replace_chunk(control, result)
        control(False)

    def _replace_chunk(self, control: ChunkControl, result: Any) -> None:
        if control.state is ChunkState.FORWARDED:
            self.log.debug("Transform result ignored; chunk already forwarded")
            return
        control.chunk = result

    def _forward(self, chunk: Any) -> None:
        self.chunks_forwarded += 1
        self.bytes_forwarded += len(chunk)
        if not self.sink.write(chunk):
            self._suspend(PauseReason.BACKPRESSURE)

    def _hold(self, control: ChunkControl) -> None:
        self._suspend(PauseReason.TRANSFORM)
        timeout = self.config.transform_timeout
        if timeout is not None:
            control._timer = asyncio.get_running_loop().call_later(
                timeout, self._on_transform_timeout, control, timeout
            )

    def _release_held(self, control: ChunkControl) -> None:
        if control._timer is not None:
            control._timer.cancel()
            control._timer = None
        if self.closed:
            self.log.debug("Held chunk released after bridge closed; dropped")
            return
        if self.current is control:
            self.current = None
        self._forward(control.chunk)
        self._release(PauseReason.TRANSFORM)

    def _suspend(self, reason: PauseReason) -> None:
        was_paused = bool(self.paused_by)
        self.paused_by |= reason
        if not was_paused:
            self.source.pause()
        self.log.debug(f"Source held by {self.paused_by}")

    def _release(self, reason: PauseReason) -> None:
        if not self.paused_by & reason:
            return
        self.paused_by &= ~reason
        if not self.paused_by:
            self.source.resume()
            self.log.debug("Source resumed")
        else:
            self.log.debug(f"Source still held by {self.paused_by}")

    def _on_drain(self) -> None:
        self._release(PauseReason.BACKPRESSURE)

    def _on_end(self) -> None:
        self._detach()
        if self.config.end_sink:
            self.sink.end()
        self.log.debug(
            "Bridge finished",
            extra={"chunks": self.chunks_forwarded, "bytes": self.bytes_forwarded},
        )
        if self._done is not None and not self._done.done():
            self._done.set_result(None)

    def _on_error(self, exc: BaseException) -> None:
        self._fail(exc)

    def _on_transform_timeout(self, control: ChunkControl, timeout: float) -> None:
        control._timer = None
        self.log.error(f"Transform held a chunk for more than {timeout}s")
        self._fail(TransformTimeoutError(self.bridge_id, timeout, len(control.chunk)))

    def _fail(self, exc: BaseException) -> None:
        if self.closed:
            return
        self._detach()
        self.source.pause()
        control = self.current
        if control is not None:
            if control._timer is not None:
                control._timer.cancel()
                control._timer = None
            if control.task is not None and not control.task.done():
                control.task.cancel()
                self.log.debug("Pending transform cancelled")
        if self._done is not None and not self._done.done():
            self._done.set_exception(exc)

    def _detach(self) -> None:
        self.closed = True
        self.source.off("data", self._on_data)
        self.source.off("end", self._on_end)
        self.source.off("error", self._on_error)
        self.sink.off("drain", self._on_drain)
        self.sink.off("error", self._on_error)


def bridge(
    source: ReadableStream,
    sink: WritableStream,
    transform: StreamTransform | None = None,
    config: BridgeConfig | None = None,
) -> StreamBridge:
    """Connect ``source`` to ``sink`` and start forwarding chunks.

    Args:
        source: Stream emitting ``data``/``end``, supporting pause/resume
        sink: Stream with ``write() -> bool`` and a ``drain`` event
        transform: Optional ``(chunk, control)`` transform
        config: Bridge options (timeout, ending the sink)

    Returns:
        The attached bridge; awaiting ``wait()`` on it is optional
    """
    return StreamBridge(source, sink, transform, config).attach()


async def pipe_file(
    src_path: str | Path,
    dst_path: str | Path,
    transform: StreamTransform | None = None,
    config: BridgeConfig | None = None,
) -> None:
    """Stream a file into another through an optional transform.

    Both files are opened here, so both are closed before returning,
    whether or not ``config.end_sink`` is set. On failure the chunks
    forwarded so far are flushed and the bridge's error is raised.

    Args:
        src_path: File to read
        dst_path: File to create or truncate
        transform: Optional ``(chunk, control)`` transform
        config: Bridge options (default from ``BridgeConfig.from_env()``)

    Raises:
        TransformTimeoutError: If a transform held a chunk too long
        Exception: Read, write and transform errors, unchanged
    """
    config = config or BridgeConfig.from_env()
    source = FileReadStream(src_path, chunk_size=config.read_chunk_size)
    sink = FileWriteStream(dst_path, high_water_mark=config.high_water_mark)

    try:
        await bridge(source, sink, transform, config).wait()
    except BaseException:
        await source.aclose()
        sink.end()
        # A sink failure here is secondary to the bridge error
        with contextlib.suppress(Exception):
            await sink.wait_closed()
        raise

    sink.end()
    await sink.wait_closed()
