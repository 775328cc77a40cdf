"""
Tests for the fixed-buffer block copier.

Covers chunk/tail accounting, transform ordering, auto-close behavior,
cursor handling and error propagation.
"""

from __future__ import annotations

import io
import os

import pytest

from stream_relay import BufferValidationError, CopyStats, copy, copy_file
from stream_relay.block_copy import BlockCopier

# ---------------------------------------------------------------------------
# Chunk accounting
# ---------------------------------------------------------------------------


class TestChunkAccounting:
    """Full chunks plus at most one tail write, totalling the source size."""

    def test_ten_bytes_with_four_byte_buffer(self, recording):
        source = recording(b"0123456789", label="source")
        dest = recording()

        stats = copy(source, dest, bytearray(4), auto_close=False)

        assert dest.write_sizes == [4, 4, 2]
        assert dest.getvalue() == b"0123456789"
        assert stats.full_chunks == 2
        assert stats.tail_size == 2
        assert stats.bytes_written == 10

    def test_twelve_bytes_with_four_byte_buffer(self, recording):
        source = recording(b"abcdefghijkl", label="source")
        dest = recording()

        stats = copy(source, dest, bytearray(4), auto_close=False)

        assert dest.write_sizes == [4, 4, 4]
        assert dest.getvalue() == b"abcdefghijkl"
        assert stats.tail_size == 0
        assert stats.writes == 3

    def test_exact_multiple_ends_on_short_read(self, recording):
        """The loop only stops on a read shorter than the buffer."""
        source = recording(b"abcdefgh", label="source")
        dest = recording()

        stats = copy(source, dest, bytearray(4), auto_close=False)

        assert stats.reads == 3
        assert stats.writes == 2

    def test_partial_tail_needs_no_extra_read(self, recording):
        source = recording(b"abcdefghij", label="source")
        dest = recording()

        stats = copy(source, dest, bytearray(4), auto_close=False)

        assert stats.reads == 3

    def test_empty_source_writes_nothing(self, recording):
        source = recording(b"", label="source")
        dest = recording()
        calls = []

        stats = copy(source, dest, bytearray(4), auto_close=False, transform=calls.append)

        assert dest.write_sizes == []
        assert calls == []
        assert stats == CopyStats(reads=1, writes=0, bytes_written=0, full_chunks=0, tail_size=0)

    def test_source_smaller_than_buffer(self, recording):
        source = recording(b"xyz", label="source")
        dest = recording()

        copy(source, dest, bytearray(1024), auto_close=False)

        assert dest.write_sizes == [3]
        assert dest.getvalue() == b"xyz"

    @pytest.mark.parametrize("size", [1, 4095, 4096, 4097, 10_000])
    def test_destination_matches_source(self, recording, payload, size):
        data = payload(size)
        source = recording(data, label="source")
        dest = recording()

        stats = copy(source, dest, bytearray(4096), auto_close=False)

        assert dest.getvalue() == data
        assert stats.bytes_written == size
        assert stats.full_chunks == size // 4096


# ---------------------------------------------------------------------------
# Transform
# ---------------------------------------------------------------------------


class TestTransform:
    """The transform sees every chunk, in place, before it is written."""

    def test_transform_runs_before_each_write(self, recording, events):
        source = recording(b"0123456789", label="source")
        dest = recording()

        def transform(chunk: memoryview) -> None:
            events.append(("transform", len(chunk)))

        copy(source, dest, bytearray(4), auto_close=False, transform=transform)

        ordered = [e for e in events if e[0] in ("transform", "write")]
        assert ordered == [
            ("transform", 4),
            ("write", "dest", 4),
            ("transform", 4),
            ("write", "dest", 4),
            ("transform", 2),
            ("write", "dest", 2),
        ]

    def test_transform_called_once_per_written_chunk(self, recording):
        source = recording(b"a" * 12, label="source")
        dest = recording()
        sizes = []

        copy(source, dest, bytearray(4), auto_close=False, transform=lambda c: sizes.append(len(c)))

        assert sizes == [4, 4, 4]

    def test_in_place_inversion(self, recording, payload):
        data = payload(10)
        source = recording(data, label="source")
        dest = recording()

        def invert(chunk: memoryview) -> None:
            for i in range(len(chunk)):
                chunk[i] = ~chunk[i] & 0xFF

        copy(source, dest, bytearray(4), auto_close=False, transform=invert)

        assert dest.getvalue() == bytes(~b & 0xFF for b in data)

    def test_transform_return_value_is_ignored(self, recording):
        source = recording(b"hello", label="source")
        dest = recording()

        copy(source, dest, bytearray(2), auto_close=False, transform=lambda c: b"ignored")

        assert dest.getvalue() == b"hello"

    def test_buffer_is_reused(self, recording):
        source = recording(b"abcdef", label="source")
        dest = recording()
        buffer = bytearray(4)
        seen = []

        copy(source, dest, buffer, auto_close=False, transform=lambda c: seen.append(c))

        # Both views point at the same buffer, which now holds the tail
        assert bytes(buffer[:2]) == b"ef"
        assert all(view.obj is buffer for view in seen)


# ---------------------------------------------------------------------------
# Closing
# ---------------------------------------------------------------------------


class TestAutoClose:
    def test_auto_close_closes_dest_then_source(self, recording, events):
        source = recording(b"abc", label="source")
        dest = recording()

        copy(source, dest, bytearray(2), auto_close=True)

        closes = [e for e in events if e[0] == "close"]
        assert closes == [("close", "dest"), ("close", "source")]

    def test_auto_close_false_leaves_files_usable(self, tmp_path):
        src_path = tmp_path / "src.bin"
        src_path.write_bytes(b"0123456789")

        with open(src_path, "rb") as src, open(tmp_path / "dst.bin", "w+b") as dst:
            copy(src, dst, bytearray(4), auto_close=False)

            assert not src.closed
            assert not dst.closed
            dst.write(b"!")
            dst.seek(0)
            assert dst.read() == b"0123456789!"
            src.seek(0)
            assert src.read(2) == b"01"

    def test_auto_close_closes_fds(self, make_file, tmp_path):
        path = make_file(content=b"abcdef")
        read_fd = os.open(path, os.O_RDONLY)
        write_fd = os.open(tmp_path / "out.bin", os.O_WRONLY | os.O_CREAT)

        copy(read_fd, write_fd, bytearray(4), auto_close=True)

        with pytest.raises(OSError):
            os.fstat(read_fd)
        with pytest.raises(OSError):
            os.fstat(write_fd)
        assert (tmp_path / "out.bin").read_bytes() == b"abcdef"


# ---------------------------------------------------------------------------
# Cursor handling
# ---------------------------------------------------------------------------


class TestCursor:
    def test_source_cursor_left_at_end(self, make_file, tmp_path):
        path = make_file(content=b"0123456789")
        read_fd = os.open(path, os.O_RDONLY)
        write_fd = os.open(tmp_path / "out.bin", os.O_WRONLY | os.O_CREAT)
        try:
            copy(read_fd, write_fd, bytearray(4), auto_close=False)

            assert os.lseek(read_fd, 0, os.SEEK_CUR) == 10
            assert os.lseek(write_fd, 0, os.SEEK_CUR) == 10
        finally:
            os.close(write_fd)
            os.close(read_fd)

    def test_copy_starts_at_current_position(self, recording):
        source = recording(b"HEADERbody-bytes", label="source")
        source.seek(6)
        dest = recording()

        stats = copy(source, dest, bytearray(4), auto_close=False)

        assert dest.getvalue() == b"body-bytes"
        assert stats.tail_size == 2

    def test_file_objects(self):
        src = io.BytesIO(b"file object content")
        dst = io.BytesIO()

        copy(src, dst, bytearray(5), auto_close=False)

        assert dst.getvalue() == b"file object content"
        assert src.tell() == len(b"file object content")


# ---------------------------------------------------------------------------
# Validation and errors
# ---------------------------------------------------------------------------


class TestErrors:
    def test_empty_buffer_rejected(self, recording):
        with pytest.raises(BufferValidationError) as exc_info:
            copy(recording(b"abc"), recording(), bytearray(0))

        assert exc_info.value.capacity == 0
        assert isinstance(exc_info.value, ValueError)

    def test_read_only_buffer_rejected(self, recording):
        with pytest.raises(BufferValidationError):
            copy(recording(b"abc"), recording(), b"\x00" * 4)

    def test_non_buffer_rejected(self, recording):
        with pytest.raises(BufferValidationError):
            BlockCopier(recording(b"abc"), recording(), [0, 0, 0, 0])

    def test_unusable_handle_rejected(self):
        with pytest.raises(TypeError):
            copy("not a handle", io.BytesIO(), bytearray(4))

    def test_write_failure_propagates_unmodified(self, make_file):
        path = make_file(content=b"abcdef")
        read_fd = os.open(path, os.O_RDONLY)
        not_writable = os.open(path, os.O_RDONLY)
        try:
            with pytest.raises(OSError):
                copy(read_fd, not_writable, bytearray(4), auto_close=True)

            # Handles stay open on failure
            os.fstat(read_fd)
            os.fstat(not_writable)
        finally:
            os.close(not_writable)
            os.close(read_fd)

    def test_transform_failure_propagates(self, recording):
        def boom(chunk: memoryview) -> None:
            raise RuntimeError("transform failed")

        with pytest.raises(RuntimeError, match="transform failed"):
            copy(recording(b"abcdef"), recording(), bytearray(4), transform=boom)


# ---------------------------------------------------------------------------
# copy_file
# ---------------------------------------------------------------------------


class TestCopyFile:
    def test_copies_by_path(self, make_file, tmp_path, payload):
        src = make_file(size=10_000)
        dst = tmp_path / "copy.bin"

        stats = copy_file(src, dst, buffer_size=4096)

        assert dst.read_bytes() == payload(10_000)
        assert stats.full_chunks == 2
        assert stats.tail_size == 10_000 - 8192

    def test_truncates_existing_destination(self, make_file, tmp_path):
        src = make_file(content=b"short")
        dst = tmp_path / "copy.bin"
        dst.write_bytes(b"a much longer previous content")

        copy_file(src, dst, buffer_size=2)

        assert dst.read_bytes() == b"short"

    def test_buffer_size_from_env(self, make_file, tmp_path, monkeypatch):
        monkeypatch.setenv("STREAM_RELAY_BUFFER_SIZE", "3")
        src = make_file(content=b"0123456789")

        stats = copy_file(src, tmp_path / "copy.bin")

        assert stats.full_chunks == 3
        assert stats.tail_size == 1

    def test_transform_applies(self, make_file, tmp_path):
        src = make_file(content=b"abc")
        dst = tmp_path / "copy.bin"

        def upper(chunk: memoryview) -> None:
            chunk[:] = bytes(chunk).upper()

        copy_file(src, dst, buffer_size=2, transform=upper)

        assert dst.read_bytes() == b"ABC"

    def test_missing_source_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            copy_file(tmp_path / "missing.bin", tmp_path / "copy.bin")

        assert not (tmp_path / "copy.bin").exists()
