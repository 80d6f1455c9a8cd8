"""
Solidity Compiler Metadata Indexer

Locates the CBOR metadata trailer that solc appends to EVM bytecode,
decodes it, and resolves the IPFS or Swarm digest of the contract's
metadata JSON into a stable URI such as ``ipfs://Qm...`` or ``bzz://...``.
"""

__version__ = "0.1.0"
__author__ = "Solidity Metadata Indexer Team"
