"""
Metadata Trailer Locator

solc appends ``<cbor metadata><2-byte big-endian length>`` to the end of
the bytecode it emits. This module finds that CBOR slice in an arbitrary
byte buffer using nothing but the declared length and the buffer size.
"""

import logging
from typing import Optional, Union

from .exceptions import InsufficientDataError, TrailerError, TruncatedTrailerError

logger = logging.getLogger(__name__)

# Number of bytes that hold the length of the CBOR metadata
METADATA_LENGTH_SIZE = 2

BytesLike = Union[bytes, bytearray, memoryview]


def declared_metadata_length(data: BytesLike) -> int:
    """
    Read the metadata length declared by the final two bytes of ``data``.

    Args:
        data: Raw bytecode or any other byte buffer

    Returns:
        The declared length N of the CBOR metadata block

    Raises:
        InsufficientDataError: If ``data`` is shorter than the length field
    """
    if len(data) < METADATA_LENGTH_SIZE:
        raise InsufficientDataError(
            f"buffer of {len(data)} bytes cannot hold a "
            f"{METADATA_LENGTH_SIZE}-byte length field"
        )
    return int.from_bytes(bytes(data[-METADATA_LENGTH_SIZE:]), byteorder="big")


def locate_metadata(data: BytesLike) -> bytes:
    """
    Return the CBOR metadata slice that precedes the length field.

    The slice spans ``data[len - (N + 2) : len - 2]`` and is exactly N bytes
    long. A declared length of zero yields an empty slice.

    Raises:
        InsufficientDataError: If ``data`` is shorter than the length field
        TruncatedTrailerError: If N exceeds the bytes preceding the length field
    """
    length = declared_metadata_length(data)
    total = len(data)
    if total < length + METADATA_LENGTH_SIZE:
        raise TruncatedTrailerError(
            f"declared metadata length {length} exceeds the "
            f"{total - METADATA_LENGTH_SIZE} bytes available"
        )
    start = total - (length + METADATA_LENGTH_SIZE)
    return bytes(data[start:total - METADATA_LENGTH_SIZE])


def find_metadata_slice(data: BytesLike) -> Optional[bytes]:
    """Like :func:`locate_metadata` but returns ``None`` instead of raising."""
    try:
        return locate_metadata(data)
    except TrailerError as e:
        logger.debug("No metadata trailer: %s", e)
        return None
