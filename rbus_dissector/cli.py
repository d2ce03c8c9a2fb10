"""
Command-line dissector

Reads a captured RBus byte stream (a file of back-to-back rtMessage
frames, or a hex string), reassembles the messages and prints their
field trees.
"""
import argparse
import json
import sys
from pathlib import Path
from typing import Iterator, List, Optional

import structlog

from rbus_dissector.config import settings
from rbus_dissector.engine.dissector import DissectStatus, RBusDissector
from rbus_dissector.exceptions import ConfigurationError
from rbus_dissector.logging import setup_logging

logger = structlog.get_logger()

DEFAULT_CHUNK_SIZE = 4096


def iter_chunks(data: bytes, chunk_size: int) -> Iterator[bytes]:
    for start in range(0, len(data), chunk_size):
        yield data[start:start + chunk_size]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rbus-dissect", description="RBus message dissector")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "capture",
        nargs="?",
        type=Path,
        help="File holding raw RBus stream bytes",
    )
    source.add_argument(
        "--hex",
        dest="hex_data",
        help="Stream bytes as a hex string",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=DEFAULT_CHUNK_SIZE,
        help=f"Feed the stream in pieces of this many bytes (default: {DEFAULT_CHUNK_SIZE})",
    )
    parser.add_argument(
        "--heuristic",
        action="store_true",
        help="Only dissect streams that pass the RBus heuristic",
    )
    parser.add_argument(
        "--no-heuristic",
        dest="heuristic",
        action="store_false",
        help="Dissect the stream without the RBus heuristic",
    )
    parser.set_defaults(heuristic=settings.heuristic_enabled)
    parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Print one JSON document per message",
    )
    parser.add_argument(
        "--depth-limit",
        type=int,
        default=settings.msgpack_depth_limit,
        help=f"MessagePack nesting limit (default: {settings.msgpack_depth_limit})",
    )
    parser.add_argument(
        "--object-limit",
        type=int,
        default=settings.msgpack_object_limit,
        help=f"MessagePack objects per payload (default: {settings.msgpack_object_limit})",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="Logging level",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    setup_logging("rbus-cli", level=args.log_level.upper(), log_to_file=False)

    if args.chunk_size < 1:
        print("--chunk-size must be positive", file=sys.stderr)
        return 2

    if args.hex_data is not None:
        try:
            data = bytes.fromhex(args.hex_data.replace(" ", ""))
        except ValueError as e:
            print(f"Invalid hex string: {e}", file=sys.stderr)
            return 2
    else:
        try:
            data = args.capture.read_bytes()
        except OSError as e:
            print(f"Cannot read {args.capture}: {e}", file=sys.stderr)
            return 2

    try:
        dissector = RBusDissector(depth_limit=args.depth_limit, object_limit=args.object_limit)
    except ConfigurationError as e:
        print(e.message, file=sys.stderr)
        return 2

    logger.info("rbus_cli_start", bytes=len(data), chunk_size=args.chunk_size, heuristic=args.heuristic)

    exit_code = 0
    for index, result in enumerate(dissector.iter_messages(iter_chunks(data, args.chunk_size), args.heuristic)):
        if result.status != DissectStatus.COMPLETE:
            exit_code = 1

        if args.json:
            print(json.dumps(result.to_dict()))
            continue

        print(f"Message {index + 1}: {result.summary or result.status.value}")
        if result.tree is not None:
            print(result.tree.render(indent=1))
        if result.status == DissectStatus.NEED_MORE:
            print(f"    Incomplete message: {result.needed} more bytes needed")
        elif result.status == DissectStatus.REJECTED:
            print(f"    Not RBus: {result.reason}")

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
