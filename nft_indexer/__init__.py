"""
XRPL NFT Indexer

Follows the validated transaction stream of the XRP Ledger and keeps a local
SQLite record of every NFT minted by one issuer under one taxon: its owner,
whether it was burned, and the descriptive metadata behind its URI.

MODULES:
========

1. contracts   - immutable transaction, lookup, metadata and record types
2. diff        - new NFT IDs and consumed offers from AffectedNodes
3. metadata    - hex URI decoding, IPFS gateway rewrite, JSON fetch
4. schema      - attribute name sanitizing, column creation
5. storage     - SQLite nfts table: upsert and tracked-only updates
6. dispatcher  - classification and the sharded worker pool
7. ledger      - websocket client: subscribe, nft_info, stream
8. service     - wires everything from one IndexerConfig
9. cli         - argument parsing, logging, exit codes
"""

from .config import IndexerConfig
from .contracts import (
    Classification, Intent, LedgerTransaction, NFTokenInfo, NFTRecord,
    TokenMetadata, Trait
)
from .diff import extract_new_token_ids, extract_offer_token_ids
from .dispatcher import EventDispatcher, TransactionClassifier
from .ledger import LedgerClient, LedgerConnectionError, LedgerError, LedgerRequestError
from .metadata import MetadataResolver, decode_hex_uri, gateway_url
from .schema import SchemaManager, sanitize_column_name
from .service import IndexerService
from .storage import NFTStore

__version__ = "1.0.0"

__all__ = [
    "Classification",
    "EventDispatcher",
    "IndexerConfig",
    "IndexerService",
    "Intent",
    "LedgerClient",
    "LedgerConnectionError",
    "LedgerError",
    "LedgerRequestError",
    "LedgerTransaction",
    "MetadataResolver",
    "NFTRecord",
    "NFTStore",
    "NFTokenInfo",
    "SchemaManager",
    "TokenMetadata",
    "Trait",
    "TransactionClassifier",
    "decode_hex_uri",
    "extract_new_token_ids",
    "extract_offer_token_ids",
    "gateway_url",
    "sanitize_column_name",
]
