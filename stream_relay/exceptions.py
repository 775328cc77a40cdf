"""
Custom exceptions for stream relay.

Failures of the underlying read/write/close primitives are never wrapped:
they propagate unmodified. These exceptions only cover misuse of the
relay itself and the optional transform timeout.
"""


class StreamRelayError(Exception):
    """Base exception for all stream relay errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class BufferValidationError(StreamRelayError, ValueError):
    """Raised when a copy buffer cannot be used as a working buffer."""

    def __init__(self, message: str, capacity: int | None = None):
        details = {}
        if capacity is not None:
            details["capacity"] = capacity
        super().__init__(message, details)
        self.capacity = capacity


class StreamClosedError(StreamRelayError):
    """Raised when writing to a stream that has already been ended."""

    def __init__(self, stream_name: str):
        super().__init__(f"Write after end: {stream_name}", {"stream": stream_name})
        self.stream_name = stream_name


class TransformTimeoutError(StreamRelayError):
    """Raised when a transform stops the source and never resumes it."""

    def __init__(self, bridge_id: str, timeout: float, chunk_size: int | None = None):
        details: dict = {"bridge_id": bridge_id, "timeout": timeout}
        if chunk_size is not None:
            details["chunk_size"] = chunk_size
        super().__init__(
            f"Transform did not resume bridge {bridge_id} within {timeout}s",
            details,
        )
        self.bridge_id = bridge_id
        self.timeout = timeout
        self.chunk_size = chunk_size
