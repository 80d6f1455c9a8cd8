"""
Metadata Extraction Pipeline

Runs one byte buffer through the stages:
1. Locate the CBOR trailer
2. Decode it into a SolcMetadata record
3. Resolve the record to a single digest

Each buffer is handled independently; nothing is carried over between
calls, so the same functions serve stdin, file batches and live block scans.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, Optional

from .digest import Digest, format_digest, resolve_digest
from .exceptions import (
    InsufficientDataError,
    MalformedMetadataError,
    TruncatedTrailerError,
)
from .metadata_decoder import SolcMetadata, decode_metadata, try_decode_metadata
from .trailer import BytesLike, find_metadata_slice, locate_metadata

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ByteBuffer:
    """One input buffer and where it came from."""
    label: str
    data: bytes
    block_number: Optional[int] = None


class ExtractionStatus(Enum):
    """Where the pipeline stopped for a buffer."""
    FOUND = "found"
    NO_DIGEST = "no_digest"
    MALFORMED_METADATA = "malformed_metadata"
    TRUNCATED_TRAILER = "truncated_trailer"
    INSUFFICIENT_DATA = "insufficient_data"


@dataclass
class ExtractionResult:
    """Outcome of running the pipeline over one buffer."""
    source: str = ""
    status: ExtractionStatus = ExtractionStatus.INSUFFICIENT_DATA
    metadata_length: Optional[int] = None
    metadata: Optional[SolcMetadata] = None
    digest: Optional[Digest] = None
    block_number: Optional[int] = None

    @property
    def found(self) -> bool:
        return self.digest is not None

    @property
    def has_trailer(self) -> bool:
        """True when a length field and enough preceding bytes were present."""
        return self.status not in (
            ExtractionStatus.INSUFFICIENT_DATA,
            ExtractionStatus.TRUNCATED_TRAILER,
        )

    @property
    def uri(self) -> Optional[str]:
        return format_digest(self.digest) if self.digest else None

    def to_dict(self, include_metadata: bool = False) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "source": self.source,
            "status": self.status.value,
            "digest": self.uri,
        }
        if self.block_number is not None:
            result["block_number"] = self.block_number
        if include_metadata:
            result["metadata_length"] = self.metadata_length
            result["metadata"] = self.metadata.to_dict() if self.metadata else None
        return result


def extract_metadata(data: BytesLike) -> Optional[SolcMetadata]:
    """Locate and decode the metadata trailer, or return ``None``."""
    candidate = find_metadata_slice(data)
    if candidate is None:
        return None
    return try_decode_metadata(candidate)


def extract_digest(data: BytesLike) -> Optional[Digest]:
    """Return the digest embedded in ``data``; every failure collapses to ``None``."""
    return resolve_digest(extract_metadata(data))


def extract(data: BytesLike, source: str = "",
            block_number: Optional[int] = None) -> ExtractionResult:
    """
    Run the full pipeline and record which stage it stopped at.

    Never raises for malformed input.
    """
    result = ExtractionResult(source=source, block_number=block_number)

    try:
        candidate = locate_metadata(data)
    except InsufficientDataError as e:
        logger.debug("%s: %s", source or "<buffer>", e)
        result.status = ExtractionStatus.INSUFFICIENT_DATA
        return result
    except TruncatedTrailerError as e:
        logger.debug("%s: %s", source or "<buffer>", e)
        result.status = ExtractionStatus.TRUNCATED_TRAILER
        return result

    result.metadata_length = len(candidate)

    try:
        result.metadata = decode_metadata(candidate)
    except MalformedMetadataError as e:
        logger.debug("%s: malformed metadata: %s", source or "<buffer>", e)
        result.status = ExtractionStatus.MALFORMED_METADATA
        return result

    result.digest = resolve_digest(result.metadata)
    result.status = ExtractionStatus.FOUND if result.digest else ExtractionStatus.NO_DIGEST
    return result


def process_buffers(buffers: Iterable[ByteBuffer]) -> Iterator[ExtractionResult]:
    """Lazily run :func:`extract` once per buffer."""
    for buffer in buffers:
        yield extract(buffer.data, source=buffer.label, block_number=buffer.block_number)
