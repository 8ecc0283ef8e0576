"""
mongo-dump-stream command-line entry point.

Usage:
    mongo-dump-stream dump --uri mongodb://localhost/app > app.dump
    mongo-dump-stream load --uri mongodb://localhost/copy < app.dump

Configuration comes from environment variables (see config.py); flags
override them. Logs go to stderr so stdout can carry the dump stream.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from typing import List, Optional

import json_log_formatter

from .config import StreamConfig
from .errors import DumpStreamError
from .stream import dump, load

logger = logging.getLogger(__name__)


def setup_logging(config: StreamConfig, verbose: bool = False) -> None:
    """Configure logging based on configuration.

    Args:
        config: Stream configuration
        verbose: Force DEBUG level
    """
    level = logging.DEBUG if verbose else getattr(
        logging, config.observability.log_level.upper(), logging.INFO
    )

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("pymongo").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mongo-dump-stream",
        description="Dump a MongoDB database to a byte stream, or load one back",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--uri", help="MongoDB connection string (default: $MONGO_URI)")
    common.add_argument("--db", help="Database name (default: from the URI)")
    common.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    dump_parser = sub.add_parser("dump", parents=[common], help="Write a dump to stdout or a file")
    dump_parser.add_argument("-o", "--file", help="Output file (default: stdout)")
    dump_parser.add_argument(
        "--protocol-version",
        choices=["1", "2"],
        help="Wire protocol version (default: 2)",
    )

    load_parser = sub.add_parser("load", parents=[common], help="Load a dump from stdin or a file")
    load_parser.add_argument("-i", "--file", help="Input file (default: stdin)")
    load_parser.add_argument("--batch-bytes", type=int, help="Bulk insert size threshold")
    load_parser.add_argument(
        "--keep-existing",
        action="store_true",
        help="Do not drop existing collections before loading",
    )
    return parser


def _apply_args(config: StreamConfig, args: argparse.Namespace) -> StreamConfig:
    store = config.store
    if args.uri:
        store = dataclasses.replace(store, uri=args.uri)
    if args.db:
        store = dataclasses.replace(store, database=args.db)

    dump_config = config.dump
    load_config = config.load
    if args.command == "dump" and args.protocol_version:
        dump_config = dataclasses.replace(dump_config, protocol_version=args.protocol_version)
    if args.command == "load":
        if args.batch_bytes:
            load_config = dataclasses.replace(load_config, batch_bytes=args.batch_bytes)
        if args.keep_existing:
            load_config = dataclasses.replace(load_config, drop_existing=False)

    updated = dataclasses.replace(config, store=store, dump=dump_config, load=load_config)
    updated.validate()
    return updated


async def _run(args: argparse.Namespace, config: StreamConfig) -> None:
    if args.command == "dump":
        if args.file:
            with open(args.file, "wb") as out:
                result = await dump(config.store.uri, out, config=config)
        else:
            result = await dump(config.store.uri, config=config)
        print(
            f"Dumped {result.collections} collections, {result.documents} documents "
            f"({result.bytes_written} bytes) in {result.duration_ms}ms",
            file=sys.stderr,
        )
    else:
        if args.file:
            with open(args.file, "rb") as inp:
                result = await load(config.store.uri, inp, config=config)
        else:
            result = await load(config.store.uri, config=config)
        print(
            f"Loaded {result.collections} collections, {result.documents} documents "
            f"in {result.bulk_inserts} bulk inserts, {result.duration_ms}ms",
            file=sys.stderr,
        )


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = _apply_args(StreamConfig.from_env(), args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(config, verbose=args.verbose)
    config.log_config()

    try:
        asyncio.run(_run(args, config))
    except DumpStreamError as e:
        logger.error(f"{args.command} failed: {e}", extra={"code": e.code, **e.details})
        print(f"{args.command.capitalize()} failed: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
