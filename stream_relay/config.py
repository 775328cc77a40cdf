"""
Configuration for block copies and stream bridges.

Both configs are plain dataclasses; ``from_env()`` builds one from
``STREAM_RELAY_*`` environment variables, falling back to the defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_BUFFER_SIZE = 1024 * 1024  # 1MB working buffer for block copies
DEFAULT_HIGH_WATER_MARK = 16 * 1024  # bytes buffered by a sink before write() returns False
DEFAULT_READ_CHUNK_SIZE = 64 * 1024  # bytes per chunk emitted by file read streams


def _env_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


@dataclass
class CopyConfig:
    """Configuration for fixed-buffer copies."""

    buffer_size: int = DEFAULT_BUFFER_SIZE

    @classmethod
    def from_env(cls) -> CopyConfig:
        """
        Create config from environment variables.

        Optional env vars:
            STREAM_RELAY_BUFFER_SIZE: Working buffer capacity in bytes (default: 1MB)
        """
        buffer_size_str = os.environ.get("STREAM_RELAY_BUFFER_SIZE", str(DEFAULT_BUFFER_SIZE))

        buffer_size = int(buffer_size_str)
        if buffer_size <= 0:
            raise ValueError("STREAM_RELAY_BUFFER_SIZE must be a positive integer")

        return cls(buffer_size=buffer_size)


@dataclass
class BridgeConfig:
    """Configuration for stream bridges and the streams they connect."""

    high_water_mark: int = DEFAULT_HIGH_WATER_MARK
    read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE
    transform_timeout: float | None = None  # seconds; None waits forever
    end_sink: bool = True

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """
        Create config from environment variables.

        Optional env vars:
            STREAM_RELAY_HIGH_WATER_MARK: Sink buffer threshold in bytes (default: 16KB)
            STREAM_RELAY_READ_CHUNK_SIZE: File stream chunk size in bytes (default: 64KB)
            STREAM_RELAY_TRANSFORM_TIMEOUT: Seconds a transform may hold a chunk (default: unset)
            STREAM_RELAY_END_SINK: End the sink when the source ends (default: true)
        """
        high_water_str = os.environ.get(
            "STREAM_RELAY_HIGH_WATER_MARK", str(DEFAULT_HIGH_WATER_MARK)
        )
        chunk_size_str = os.environ.get(
            "STREAM_RELAY_READ_CHUNK_SIZE", str(DEFAULT_READ_CHUNK_SIZE)
        )
        timeout_str = os.environ.get("STREAM_RELAY_TRANSFORM_TIMEOUT")
        end_sink_str = os.environ.get("STREAM_RELAY_END_SINK", "true")

        high_water_mark = int(high_water_str)
        if high_water_mark <= 0:
            raise ValueError("STREAM_RELAY_HIGH_WATER_MARK must be a positive integer")

        read_chunk_size = int(chunk_size_str)
        if read_chunk_size <= 0:
            raise ValueError("STREAM_RELAY_READ_CHUNK_SIZE must be a positive integer")

        transform_timeout = float(timeout_str) if timeout_str else None
        if transform_timeout is not None and transform_timeout <= 0:
            raise ValueError("STREAM_RELAY_TRANSFORM_TIMEOUT must be a positive number of seconds")

        return cls(
            high_water_mark=high_water_mark,
            read_chunk_size=read_chunk_size,
            transform_timeout=transform_timeout,
            end_sink=_env_bool(end_sink_str),
        )
