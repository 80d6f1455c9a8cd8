"""
Byte Buffer Sources

Everything that produces the bytes fed to the extraction pipeline lives here:
stdin (raw or a single hex line), files (raw or hex), and a JSON-RPC block
scanner that yields the init code of every contract-creation transaction.
Each source is just an iterable of :class:`ByteBuffer`, so the pipeline never
knows where its input came from.
"""

import logging
import string
import sys
import time
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, Iterator, Optional, TextIO, Union

import requests
from eth_utils import to_hex
from web3 import Web3

from .exceptions import InputDecodeError
from .extractor import ByteBuffer

logger = logging.getLogger(__name__)

_HEX_DIGITS = set(string.hexdigits)


# ---------------------------------------------------------------------------
# Offline sources
# ---------------------------------------------------------------------------

def _strip_hex_prefix(text: str) -> str:
    text = text.strip()
    if text[:2] in ("0x", "0X"):
        return text[2:]
    return text


def decode_hex_text(text: str) -> bytes:
    """
    Decode hex-encoded bytecode, with or without a ``0x`` prefix.

    Raises:
        InputDecodeError: If the text is not valid hex
    """
    clean = "".join(_strip_hex_prefix(text).split())
    try:
        return bytes.fromhex(clean)
    except ValueError as e:
        raise InputDecodeError(f"Invalid hex input: {e}") from e


def _looks_like_hex(raw: bytes) -> bool:
    try:
        text = raw.decode("ascii")
    except UnicodeDecodeError:
        return False
    clean = "".join(_strip_hex_prefix(text).split())
    return len(clean) % 2 == 0 and all(c in _HEX_DIGITS for c in clean)


def read_stdin_raw(stream: Optional[BinaryIO] = None) -> ByteBuffer:
    """Read binary stdin to EOF."""
    stream = stream if stream is not None else sys.stdin.buffer
    return ByteBuffer(label="<stdin>", data=stream.read())


def read_stdin_hex_line(stream: Optional[TextIO] = None) -> ByteBuffer:
    """Read the first line of stdin and decode it as hex."""
    stream = stream if stream is not None else sys.stdin
    return ByteBuffer(label="<stdin>", data=decode_hex_text(stream.readline()))


def read_file_buffer(path: Union[str, Path],
                     hex_encoded: Optional[bool] = None) -> ByteBuffer:
    """
    Read a file holding bytecode.

    Args:
        path: File to read
        hex_encoded: True for hex text, False for raw bytes, None to detect.
            Detection treats ASCII hex (optionally ``0x``-prefixed) as hex
            and anything else as raw bytecode.

    Raises:
        InputDecodeError: If the file cannot be read or is not valid hex
    """
    path = Path(path)
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise InputDecodeError(f"Cannot read {path}: {e}") from e

    if hex_encoded is None:
        hex_encoded = bool(raw.strip()) and _looks_like_hex(raw)

    if hex_encoded:
        try:
            text = raw.decode("ascii")
        except UnicodeDecodeError as e:
            raise InputDecodeError(f"{path} is not hex text: {e}") from e
        data = decode_hex_text(text)
    else:
        data = raw

    logger.debug("Read %d bytes from %s (hex=%s)", len(data), path, hex_encoded)
    return ByteBuffer(label=str(path), data=data)


def iter_file_buffers(paths: Iterable[Union[str, Path]],
                      hex_encoded: Optional[bool] = None) -> Iterator[ByteBuffer]:
    for path in paths:
        yield read_file_buffer(path, hex_encoded=hex_encoded)


# ---------------------------------------------------------------------------
# Live source
# ---------------------------------------------------------------------------

def connect(rpc_url: str, timeout: float = 30.0) -> Web3:
    """Create a Web3 client for an HTTP JSON-RPC endpoint."""
    session = requests.Session()
    session.headers.update({"User-Agent": "solc-metadata-indexer"})
    provider = Web3.HTTPProvider(
        rpc_url, request_kwargs={"timeout": timeout}, session=session
    )
    return Web3(provider)


class ContractCreationSource:
    """
    Yield the input data of every contract-creation transaction.

    Blocks are read in order starting at ``start_block`` (the current head
    when omitted). The scanner stays ``confirmations`` blocks behind the
    head and, once caught up, sleeps ``poll_interval`` seconds before asking
    again. With ``end_block`` set it stops after that block; otherwise it
    follows the chain forever.

    Reorg handling and deduplication are left to the consumer.
    """

    def __init__(
        self,
        w3: Web3,
        start_block: Optional[int] = None,
        end_block: Optional[int] = None,
        confirmations: int = 0,
        poll_interval: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if confirmations < 0:
            raise ValueError("confirmations must be non-negative")
        if start_block is not None and end_block is not None and end_block < start_block:
            raise ValueError("end_block must not precede start_block")
        self.w3 = w3
        self.start_block = start_block
        self.end_block = end_block
        self.confirmations = confirmations
        self.poll_interval = poll_interval
        self._sleep = sleep

    def _safe_head(self) -> int:
        return self.w3.eth.block_number - self.confirmations

    def _creations_in_block(self, number: int) -> Iterator[ByteBuffer]:
        block = self.w3.eth.get_block(number, full_transactions=True)
        for tx in block["transactions"]:
            if tx.get("to") is not None:
                continue
            yield ByteBuffer(
                label=to_hex(tx["hash"]),
                data=bytes(tx["input"]),
                block_number=number,
            )

    def __iter__(self) -> Iterator[ByteBuffer]:
        next_block = self.start_block
        if next_block is None:
            next_block = max(self._safe_head(), 0)
        logger.info("Scanning contract creations from block %d", next_block)

        while True:
            head = self._safe_head()
            if self.end_block is not None:
                head = min(head, self.end_block)

            while next_block <= head:
                count = 0
                for buffer in self._creations_in_block(next_block):
                    count += 1
                    yield buffer
                logger.debug("Block %d: %d contract creations", next_block, count)
                next_block += 1

            if self.end_block is not None and next_block > self.end_block:
                logger.info("Reached end block %d", self.end_block)
                return

            self._sleep(self.poll_interval)
