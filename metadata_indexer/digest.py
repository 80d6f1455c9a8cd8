"""
Digest resolution and formatting.

A metadata record may carry an IPFS multihash, one or two generations of
Swarm hash, or nothing at all. :func:`resolve_digest` picks exactly one of
them and :func:`format_digest` renders it as a URI.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import base58

from .metadata_decoder import SolcMetadata

IPFS_SCHEME = "ipfs://"
SWARM_SCHEME = "bzz://"


class DigestKind(Enum):
    """Content-addressed storage network a digest points into."""
    IPFS = "ipfs"
    SWARM = "swarm"


@dataclass(frozen=True)
class Digest:
    """A single resolved metadata digest."""
    kind: DigestKind
    data: bytes

    @classmethod
    def ipfs(cls, data: bytes) -> "Digest":
        return cls(DigestKind.IPFS, bytes(data))

    @classmethod
    def swarm(cls, data: bytes) -> "Digest":
        return cls(DigestKind.SWARM, bytes(data))

    def __str__(self) -> str:
        return format_digest(self)


def resolve_digest(metadata: Optional[SolcMetadata]) -> Optional[Digest]:
    """
    Select the one digest a metadata record points to.

    IPFS always wins, even when Swarm hashes are also present. Among Swarm
    hashes ``bzzr1`` supersedes ``bzzr0``. Returns ``None`` when the record
    is missing or carries no digest.
    """
    if metadata is None:
        return None
    if metadata.ipfs is not None:
        return Digest.ipfs(metadata.ipfs)
    if metadata.bzzr1 is not None:
        return Digest.swarm(metadata.bzzr1)
    if metadata.bzzr0 is not None:
        return Digest.swarm(metadata.bzzr0)
    return None


def format_digest(digest: Digest) -> str:
    """
    Render a digest as ``ipfs://<base58>`` or ``bzz://<hex>``.

    The IPFS form is the plain Base58 encoding of the multihash bytes, which
    is the CID one would hand to a gateway.
    """
    if digest.kind is DigestKind.IPFS:
        return IPFS_SCHEME + base58.b58encode(digest.data).decode("ascii")
    if digest.kind is DigestKind.SWARM:
        return SWARM_SCHEME + digest.data.hex()
    raise ValueError(f"Unknown digest kind: {digest.kind!r}")
