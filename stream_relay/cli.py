"""
Command-line entry point.

    stream-relay copy SRC DST [--buffer-size N] [--invert]
    stream-relay pipe SRC DST [--chunk-size N] [--high-water-mark N] [--timeout S] [--invert]

Log records are written to stdout as JSON lines.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from typing import Any

from .block_copy import copy_file
from .bridge import pipe_file
from .config import BridgeConfig
from .exceptions import StreamRelayError
from .logging_utils import configure_structured_logging, get_relay_logger

logger = get_relay_logger("cli")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def invert_bytes(chunk: Any, control: Any = None) -> None:
    """Flip every bit of ``chunk`` in place. Works as a copy or a bridge transform."""
    for i in range(len(chunk)):
        chunk[i] ^= 0xFF


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stream-relay",
        description="Stream Relay - copy files through a fixed buffer or a stream bridge",
        epilog="Defaults come from the STREAM_RELAY_* environment variables.",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default="WARNING",
        help="Level of the JSON log lines written to stdout (default: WARNING)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    copy_cmd = commands.add_parser("copy", help="Synchronous fixed-buffer copy")
    copy_cmd.add_argument("src", help="File to read")
    copy_cmd.add_argument("dst", help="File to create or truncate")
    copy_cmd.add_argument("--buffer-size", type=int, help="Working buffer capacity in bytes")
    copy_cmd.add_argument("--invert", action="store_true", help="Invert every byte")

    pipe_cmd = commands.add_parser("pipe", help="Asynchronous flow-controlled stream bridge")
    pipe_cmd.add_argument("src", help="File to read")
    pipe_cmd.add_argument("dst", help="File to create or truncate")
    pipe_cmd.add_argument("--chunk-size", type=int, help="Bytes per chunk read from SRC")
    pipe_cmd.add_argument("--high-water-mark", type=int, help="Sink buffer threshold in bytes")
    pipe_cmd.add_argument("--timeout", type=float, help="Seconds a transform may hold a chunk")
    pipe_cmd.add_argument("--invert", action="store_true", help="Invert every byte")

    return parser


def _bridge_config(args: argparse.Namespace) -> BridgeConfig:
    config = BridgeConfig.from_env()
    overrides: dict[str, Any] = {}
    if args.chunk_size is not None:
        overrides["read_chunk_size"] = args.chunk_size
    if args.high_water_mark is not None:
        overrides["high_water_mark"] = args.high_water_mark
    if args.timeout is not None:
        overrides["transform_timeout"] = args.timeout
    return replace(config, **overrides)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    configure_structured_logging(getattr(logging, args.log_level))
    transform = invert_bytes if args.invert else None

    try:
        if args.command == "copy":
            stats = copy_file(args.src, args.dst, args.buffer_size, transform)
            logger.info(
                f"Copied {args.src} to {args.dst}",
                extra={"bytes": stats.bytes_written, "writes": stats.writes},
            )
        else:
            asyncio.run(pipe_file(args.src, args.dst, transform, _bridge_config(args)))
            logger.info(f"Piped {args.src} to {args.dst}")
    except (StreamRelayError, OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0
