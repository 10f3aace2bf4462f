"""
NFT Indexer Contracts

Immutable data structures for the NFT indexing pipeline.

BOUNDARY: Ledger Ingestion Layer
Every transaction, lookup result and metadata document enters through these
contracts. Raw stream messages are parsed once, here, and never re-read.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple
from datetime import datetime
from enum import Enum


# =============================================================================
# ENUMS
# =============================================================================

class TransactionType(Enum):
    """Ledger transaction types the indexer subscribes to."""
    NFTOKEN_MINT = "NFTokenMint"
    NFTOKEN_BURN = "NFTokenBurn"
    NFTOKEN_ACCEPT_OFFER = "NFTokenAcceptOffer"


class LedgerEntryType(Enum):
    """Ledger entry types inspected in transaction metadata."""
    NFTOKEN_PAGE = "NFTokenPage"
    NFTOKEN_OFFER = "NFTokenOffer"


class Intent(Enum):
    """What a relevant transaction means for the local record."""
    MINT = "mint"                        # issuer minted directly
    AUTHORIZED_MINT = "authorized_mint"  # delegated minter on behalf of issuer
    TRANSFER = "transfer"                # offer accepted, owner changes
    BURN = "burn"                        # token destroyed


class FetchStatus(Enum):
    """Status of a metadata fetch attempt."""
    SUCCESS = "success"
    EMPTY_URI = "empty_uri"
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    PARSE_ERROR = "parse_error"
    NETWORK_ERROR = "network_error"


SUCCESS_RESULT = "tesSUCCESS"


# =============================================================================
# TRANSACTION CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class LedgerTransaction:
    """
    One validated transaction from the `transactions` stream.

    Field access is tolerant: any of the optional fields may be missing on
    transactions the indexer does not care about.
    """
    transaction_type: Optional[str]
    account: Optional[str]
    tx_json: Dict[str, Any]
    meta: Dict[str, Any]
    tx_hash: Optional[str] = None
    ledger_index: Optional[int] = None
    validated: bool = True

    @classmethod
    def from_stream(cls, message: Dict[str, Any]) -> Optional['LedgerTransaction']:
        """
        Parse a stream message.

        API v2 servers send the body as `tx_json`, API v1 servers as
        `transaction`. Returns None when neither is present.
        """
        if not isinstance(message, dict):
            return None

        body = message.get('tx_json')
        if not isinstance(body, dict):
            body = message.get('transaction')
        if not isinstance(body, dict):
            return None

        meta = message.get('meta')
        if not isinstance(meta, dict):
            meta = {}

        return cls(
            transaction_type=body.get('TransactionType'),
            account=body.get('Account'),
            tx_json=body,
            meta=meta,
            tx_hash=message.get('hash') or body.get('hash'),
            ledger_index=message.get('ledger_index'),
            validated=message.get('validated', True) is not False
        )

    @property
    def issuer(self) -> Optional[str]:
        return self.tx_json.get('Issuer')

    @property
    def taxon(self) -> Optional[int]:
        return self.tx_json.get('NFTokenTaxon')

    @property
    def nft_id(self) -> Optional[str]:
        """Token named directly in the body (burns)."""
        return self.tx_json.get('NFTokenID')

    @property
    def succeeded(self) -> bool:
        """False only when the metadata reports a non-success result."""
        result = self.meta.get('TransactionResult')
        return result is None or result == SUCCESS_RESULT


@dataclass(frozen=True)
class Classification:
    """Outcome of classifying one transaction."""
    intent: Intent
    transaction: LedgerTransaction
    nft_ids: Tuple[str, ...] = field(default_factory=tuple)

    def per_token(self) -> Tuple['Classification', ...]:
        """Split into one single-token classification per NFT id, in order."""
        return tuple(replace(self, nft_ids=(nft_id,)) for nft_id in self.nft_ids)


# =============================================================================
# LEDGER LOOKUP CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class NFTokenInfo:
    """Result of an `nft_info` detail lookup."""
    nft_id: str
    uri_hex: str = ""
    owner: Optional[str] = None
    issuer: Optional[str] = None
    taxon: Optional[int] = None
    is_burned: bool = False

    @classmethod
    def from_result(cls, nft_id: str, result: Dict[str, Any]) -> 'NFTokenInfo':
        return cls(
            nft_id=result.get('nft_id', nft_id),
            uri_hex=result.get('uri') or "",
            owner=result.get('owner'),
            issuer=result.get('issuer'),
            taxon=result.get('nft_taxon'),
            is_burned=bool(result.get('is_burned', False))
        )


# =============================================================================
# METADATA CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class Trait:
    """One `{trait_type, value}` pair from token metadata."""
    trait_type: str
    value: Any = None


@dataclass(frozen=True)
class TokenMetadata:
    """
    Descriptive metadata for a token.

    Every field may be empty; an empty instance is what a failed fetch
    resolves to.
    """
    name: str = ""
    image: str = ""
    attributes: Tuple[Trait, ...] = field(default_factory=tuple)

    @classmethod
    def empty(cls) -> 'TokenMetadata':
        return cls()

    @property
    def is_empty(self) -> bool:
        return not (self.name or self.image or self.attributes)


@dataclass(frozen=True)
class FetchResult:
    """
    Result of a metadata fetch attempt (success or failure).

    Failed fetches are FIRST-CLASS outputs, not exceptions.
    """
    uri: str
    url: str
    attempted_at: datetime
    completed_at: datetime
    status: FetchStatus
    http_status: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == FetchStatus.SUCCESS

    @property
    def duration_ms(self) -> float:
        return (self.completed_at - self.attempted_at).total_seconds() * 1000


# =============================================================================
# RECORD CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class NFTRecord:
    """
    One row of the `nfts` table, ready to upsert.

    `attributes` maps already-sanitized column names to values.
    """
    nft_id: str
    owner: Optional[str]
    name: str = ""
    image: str = ""
    is_burned: bool = False
    attributes: Tuple[Tuple[str, Optional[str]], ...] = field(default_factory=tuple)

    def to_row(self) -> Dict[str, Any]:
        """Column -> value mapping in insertion order."""
        row: Dict[str, Any] = {
            'nft_id': self.nft_id,
            'is_burned': 1 if self.is_burned else 0,
            'owner': self.owner,
            'name': self.name,
            'image': self.image,
        }
        for column, value in self.attributes:
            row[column] = value
        return row
