#!/usr/bin/env python3
"""
Solidity Metadata Digest Extractor

Prints the IPFS or Swarm digest that solc embedded in contract bytecode.

Usage:
    # Raw bytecode on stdin
    solc-metadata-indexer < contract.bin

    # A single 0x-prefixed hex line on stdin
    echo 0x6080...0033 | solc-metadata-indexer --hex

    # Files (raw or hex, detected automatically), with decoded metadata
    solc-metadata-indexer --metadata build/*.bin

    # Follow the chain and print digests of newly created contracts
    solc-metadata-indexer --live --rpc-url http://localhost:8545 --unique
"""

import argparse
import json
import logging
import sys
from typing import Iterable, List, Optional, Set

import requests

from .config import IndexerSettings, load_settings
from .exceptions import ConfigurationError, InputDecodeError
from .extractor import ByteBuffer, ExtractionResult, process_buffers
from .sources import (
    ContractCreationSource,
    connect,
    iter_file_buffers,
    read_stdin_hex_line,
    read_stdin_raw,
)

logger = logging.getLogger(__name__)


def setup_logging(level: str = "WARNING", log_file: Optional[str] = None) -> None:
    """Configure logging to stderr and, optionally, a file."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="solc-metadata-indexer",
        description="Extract the metadata digest solc embeds in contract bytecode",
    )
    parser.add_argument(
        "files", nargs="*", help="Bytecode files to read (default: stdin)"
    )
    parser.add_argument(
        "-i", "--hex", action="store_true",
        help="Input is hex text (stdin: first line only)",
    )
    parser.add_argument(
        "-m", "--metadata", action="store_true",
        help="Also print the decoded CBOR metadata",
    )
    parser.add_argument(
        "--json", action="store_true", help="Print one JSON object per input"
    )
    parser.add_argument(
        "-l", "--live", action="store_true",
        help="Scan contract-creation transactions over JSON-RPC",
    )
    parser.add_argument("--rpc-url", type=str, default=None, help="JSON-RPC endpoint")
    parser.add_argument(
        "--from-block", type=int, default=None,
        help="First block to scan (default: current head)",
    )
    parser.add_argument(
        "--to-block", type=int, default=None,
        help="Last block to scan (default: follow the chain)",
    )
    parser.add_argument(
        "--confirmations", type=int, default=None,
        help="Blocks to stay behind the head",
    )
    parser.add_argument(
        "--poll-interval", type=float, default=None,
        help="Seconds between head polls once caught up",
    )
    parser.add_argument(
        "--unique", action="store_true",
        help="Print each digest only the first time it is seen",
    )
    parser.add_argument(
        "--settings", type=str, default=None, help="Path to a YAML settings file"
    )
    parser.add_argument("--log-level", type=str, default=None, help="Logging level")
    return parser


def _print_result(result: ExtractionResult, args: argparse.Namespace,
                  live: bool) -> None:
    if args.json:
        print(json.dumps(result.to_dict(include_metadata=args.metadata)), flush=True)
        return

    if args.metadata:
        metadata = result.metadata.to_dict() if result.metadata else None
        print(json.dumps(metadata, indent=2))

    if result.found:
        if live:
            print(f"{result.source} {result.uri}", flush=True)
        else:
            print(result.uri)


def run_offline(args: argparse.Namespace) -> int:
    """Process stdin or files; exit status 1 if any input lacks a trailer."""
    hex_encoded = True if args.hex else None

    if args.files:
        buffers: Iterable[ByteBuffer] = iter_file_buffers(args.files, hex_encoded=hex_encoded)
    elif args.hex:
        buffers = [read_stdin_hex_line()]
    else:
        buffers = [read_stdin_raw()]

    exit_code = 0
    for result in process_buffers(buffers):
        if not result.has_trailer:
            logger.error("%s: no CBOR metadata present (%s)", result.source, result.status.value)
            exit_code = 1
            if not args.json:
                continue
        _print_result(result, args, live=False)
    return exit_code


def run_live(args: argparse.Namespace, settings: IndexerSettings) -> int:
    """Follow contract creations over JSON-RPC and print their digests."""
    rpc_url = args.rpc_url or settings.rpc_url
    if not rpc_url:
        raise ConfigurationError("--live requires --rpc-url or rpc_url in settings")

    w3 = connect(rpc_url, timeout=settings.request_timeout)
    source = ContractCreationSource(
        w3,
        start_block=args.from_block,
        end_block=args.to_block,
        confirmations=(
            args.confirmations if args.confirmations is not None else settings.confirmations
        ),
        poll_interval=(
            args.poll_interval if args.poll_interval is not None else settings.poll_interval
        ),
    )

    seen: Set[str] = set()
    try:
        for result in process_buffers(source):
            if not result.found:
                logger.debug("%s: %s", result.source, result.status.value)
                continue
            if args.unique:
                if result.uri in seen:
                    continue
                seen.add(result.uri)
            _print_result(result, args, live=True)
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping live scan")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.live and args.files:
        parser.error("--live cannot be combined with input files")

    try:
        settings = load_settings(args.settings)
    except ConfigurationError as e:
        setup_logging()
        logger.error("%s", e)
        return 1

    setup_logging(args.log_level or settings.log_level, settings.log_file)

    try:
        if args.live:
            return run_live(args, settings)
        return run_offline(args)
    except (InputDecodeError, ConfigurationError, ValueError) as e:
        logger.error("%s", e)
        return 1
    except requests.exceptions.RequestException as e:
        logger.error("RPC request failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
