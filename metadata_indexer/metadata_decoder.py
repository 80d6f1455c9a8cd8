"""
CBOR Metadata Decoder

Decodes the metadata slice found by :mod:`metadata_indexer.trailer` into a
:class:`SolcMetadata` record. The slice comes from untrusted on-chain data,
so before cbor2 sees it a bounded structural pass checks every declared
length against the bytes that remain and caps the nesting depth. A top-level
map that repeats a recognized field is rejected as malformed, since cbor2
would otherwise keep the last value silently.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set, Tuple

import cbor2

from .exceptions import MalformedMetadataError

logger = logging.getLogger(__name__)

# solc emits a flat map; anything deeper than this is not compiler output
MAX_NESTING_DEPTH = 16

# CBOR major types
_UNSIGNED_INT = 0
_NEGATIVE_INT = 1
_BYTE_STRING = 2
_TEXT_STRING = 3
_ARRAY = 4
_MAP = 5
_TAG = 6
_SIMPLE_OR_FLOAT = 7

_BREAK = 0xFF
_INDEFINITE = 31

_DIGEST_FIELDS = ("ipfs", "bzzr0", "bzzr1")
_KNOWN_FIELDS = frozenset(_DIGEST_FIELDS + ("experimental", "solc"))


@dataclass(frozen=True)
class SolcMetadata:
    """Fields solc may place in the CBOR metadata trailer."""
    ipfs: Optional[bytes] = None
    bzzr0: Optional[bytes] = None
    bzzr1: Optional[bytes] = None
    experimental: Optional[bool] = None
    solc: Optional[bytes] = None

    @property
    def compiler_version(self) -> Optional[str]:
        """
        Human-readable compiler version.

        Release builds store three bytes (major, minor, patch); prerelease
        builds store the full version string.
        """
        if self.solc is None:
            return None
        if len(self.solc) == 3:
            return ".".join(str(part) for part in self.solc)
        try:
            return self.solc.decode("utf-8")
        except UnicodeDecodeError:
            return "0x" + self.solc.hex()

    def to_dict(self) -> Dict[str, Any]:
        def _hex(value: Optional[bytes]) -> Optional[str]:
            return None if value is None else "0x" + value.hex()

        return {
            "ipfs": _hex(self.ipfs),
            "bzzr0": _hex(self.bzzr0),
            "bzzr1": _hex(self.bzzr1),
            "experimental": self.experimental,
            "solc": _hex(self.solc),
            "compiler_version": self.compiler_version,
        }


# ---------------------------------------------------------------------------
# Structural validation
# ---------------------------------------------------------------------------

def _read_head(data: bytes, offset: int) -> Tuple[int, Optional[int], int]:
    """
    Read one CBOR item head.

    Returns:
        Tuple of (major type, argument or None for indefinite length,
        offset of the first byte after the head)
    """
    if offset >= len(data):
        raise MalformedMetadataError("unexpected end of metadata")

    initial = data[offset]
    major = initial >> 5
    info = initial & 0x1F
    offset += 1

    if info < 24:
        return major, info, offset
    if info <= 27:
        size = 1 << (info - 24)
        if offset + size > len(data):
            raise MalformedMetadataError("truncated item header")
        return major, int.from_bytes(data[offset:offset + size], "big"), offset + size
    if info == _INDEFINITE:
        return major, None, offset
    raise MalformedMetadataError(
        f"reserved additional information {info} at offset {offset - 1}"
    )


def _skip_bytes(data: bytes, offset: int, length: int) -> int:
    if length > len(data) - offset:
        raise MalformedMetadataError(
            f"string of {length} bytes overruns the metadata slice"
        )
    return offset + length


def _skip_indefinite_string(data: bytes, offset: int, major: int) -> int:
    while True:
        if offset >= len(data):
            raise MalformedMetadataError("unterminated indefinite-length string")
        if data[offset] == _BREAK:
            return offset + 1
        chunk_major, length, offset = _read_head(data, offset)
        if chunk_major != major or length is None:
            raise MalformedMetadataError("invalid chunk in indefinite-length string")
        offset = _skip_bytes(data, offset, length)


def _check_duplicate_field(encoded_key: bytes, seen: Set[str]) -> None:
    """Reject a recognized field that already appeared in the top-level map."""
    if encoded_key[0] >> 5 != _TEXT_STRING:
        return
    try:
        key = cbor2.loads(encoded_key)
    except (cbor2.CBORDecodeError, ValueError) as e:
        raise MalformedMetadataError(f"invalid map key: {e}") from e
    if key not in _KNOWN_FIELDS:
        return
    if key in seen:
        raise MalformedMetadataError(f"duplicate field {key!r}")
    seen.add(key)


def _skip_container(data: bytes, offset: int, major: int,
                    count: Optional[int], depth: int) -> int:
    items = None
    if count is not None:
        items = count * 2 if major == _MAP else count
        # Every item takes at least one byte
        if items > len(data) - offset:
            raise MalformedMetadataError(
                f"container declares {items} items but only "
                f"{len(data) - offset} bytes remain"
            )

    seen: Optional[Set[str]] = set() if major == _MAP and depth == 0 else None
    index = 0
    while items is None or index < items:
        if items is None:
            if offset >= len(data):
                raise MalformedMetadataError("unterminated indefinite-length container")
            if data[offset] == _BREAK:
                offset += 1
                break
        start = offset
        offset = _skip_item(data, offset, depth + 1)
        if seen is not None and index % 2 == 0:
            _check_duplicate_field(data[start:offset], seen)
        index += 1

    if major == _MAP and index % 2:
        raise MalformedMetadataError("map has a key without a value")
    return offset


def _skip_item(data: bytes, offset: int, depth: int) -> int:
    """Validate one CBOR item starting at ``offset`` and return the offset after it."""
    if depth > MAX_NESTING_DEPTH:
        raise MalformedMetadataError(
            f"nesting deeper than {MAX_NESTING_DEPTH} levels"
        )

    major, argument, offset = _read_head(data, offset)

    if major in (_UNSIGNED_INT, _NEGATIVE_INT):
        if argument is None:
            raise MalformedMetadataError("indefinite-length integer")
        return offset
    if major in (_BYTE_STRING, _TEXT_STRING):
        if argument is None:
            return _skip_indefinite_string(data, offset, major)
        return _skip_bytes(data, offset, argument)
    if major in (_ARRAY, _MAP):
        return _skip_container(data, offset, major, argument, depth)
    if major == _TAG:
        if argument is None:
            raise MalformedMetadataError("indefinite-length tag")
        return _skip_item(data, offset, depth + 1)

    # _SIMPLE_OR_FLOAT: a bare break code is only valid inside a container
    if argument is None:
        raise MalformedMetadataError("unexpected break code")
    return offset


def check_well_formed(data: bytes) -> None:
    """
    Check that ``data`` holds exactly one bounded CBOR item.

    Raises:
        MalformedMetadataError: On truncation, excessive nesting, duplicate fields,
            reserved encodings or trailing bytes
    """
    end = _skip_item(data, 0, 0)
    if end != len(data):
        raise MalformedMetadataError(
            f"{len(data) - end} trailing bytes after metadata map"
        )


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def _optional_bytes(decoded: dict, key: str) -> Optional[bytes]:
    value = decoded.get(key)
    if value is None:
        return None
    if not isinstance(value, bytes):
        raise MalformedMetadataError(
            f"field {key!r} must be a byte string, got {type(value).__name__}"
        )
    return bytes(value)


def decode_metadata(candidate: bytes) -> SolcMetadata:
    """
    Decode a CBOR metadata slice into a :class:`SolcMetadata` record.

    Unrecognized keys are ignored and missing keys are left as ``None``.

    Args:
        candidate: The slice returned by the trailer locator

    Returns:
        The decoded metadata record

    Raises:
        MalformedMetadataError: If the slice is not a well-formed metadata map
    """
    data = bytes(candidate)
    if not data:
        raise MalformedMetadataError("empty metadata slice")

    check_well_formed(data)

    try:
        decoded = cbor2.loads(data)
    except (cbor2.CBORDecodeError, ValueError, TypeError, ArithmeticError, re.error) as e:
        raise MalformedMetadataError(f"CBOR decoding failed: {e}") from e

    if not isinstance(decoded, dict):
        raise MalformedMetadataError(
            f"metadata must be a map, got {type(decoded).__name__}"
        )

    digests = {key: _optional_bytes(decoded, key) for key in _DIGEST_FIELDS}

    experimental = decoded.get("experimental")
    if experimental is not None and not isinstance(experimental, bool):
        raise MalformedMetadataError("field 'experimental' must be a boolean")

    # Prerelease compilers write the version as text
    solc = decoded.get("solc")
    if isinstance(solc, str):
        solc = solc.encode("utf-8")
    elif solc is not None and not isinstance(solc, bytes):
        # A solc value of any other type counts as absent
        logger.debug("Ignoring 'solc' field of type %s", type(solc).__name__)
        solc = None

    return SolcMetadata(experimental=experimental, solc=solc, **digests)


def try_decode_metadata(candidate: bytes) -> Optional[SolcMetadata]:
    """Decode ``candidate``, returning ``None`` if it is malformed."""
    try:
        return decode_metadata(candidate)
    except MalformedMetadataError as e:
        logger.debug("Metadata not decoded: %s", e)
        return None
