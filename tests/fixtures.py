"""
Indexer Test Fixtures

Explicit, hand-written ledger messages. No random generation - every
identifier and account below is fixed.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

from nft_indexer.config import IndexerConfig
from nft_indexer.contracts import LedgerTransaction, NFTokenInfo


# =============================================================================
# ACCOUNTS AND IDENTIFIERS
# =============================================================================

ISSUER = "rIssuerAccount111111111111111111"
MINTER = "rAuthorizedMinter22222222222222"
BUYER = "rBuyerAccount33333333333333333333"
STRANGER = "rUnrelatedIssuer4444444444444444"
TAXON = 7

NFT_A = "000800006203F49C21D5D6E022CB16DE3538F248662FC73C00000001"
NFT_B = "000800006203F49C21D5D6E022CB16DE3538F248662FC73C00000002"
NFT_C = "000800006203F49C21D5D6E022CB16DE3538F248662FC73C00000003"
NFT_UNKNOWN = "000800006203F49C21D5D6E022CB16DE3538F248662FC73CFFFFFFFF"

METADATA_URI = "ipfs://QmMetadataHash/1.json"
METADATA_URL = "https://ipfs.io/ipfs/QmMetadataHash/1.json"


def to_hex(text: str) -> str:
    return text.encode('utf-8').hex().upper()


def make_config(**overrides) -> IndexerConfig:
    values = dict(issuer=ISSUER, taxon=TAXON, settle_delay=0.0, worker_count=2, queue_size=10)
    values.update(overrides)
    return IndexerConfig(**values)


# =============================================================================
# AFFECTED NODES
# =============================================================================

def tokens(*nft_ids: str) -> List[Dict[str, Any]]:
    return [{"NFToken": {"NFTokenID": nft_id, "URI": to_hex(METADATA_URI)}} for nft_id in nft_ids]


def created_page(*nft_ids: str) -> Dict[str, Any]:
    return {
        "CreatedNode": {
            "LedgerEntryType": "NFTokenPage",
            "LedgerIndex": "PAGE" + str(len(nft_ids)),
            "NewFields": {"NFTokens": tokens(*nft_ids)}
        }
    }


def modified_page(final_ids, previous_ids=None) -> Dict[str, Any]:
    node: Dict[str, Any] = {
        "LedgerEntryType": "NFTokenPage",
        "FinalFields": {"Flags": 0, "NFTokens": tokens(*final_ids)},
    }
    if previous_ids is not None:
        node["PreviousFields"] = {"NFTokens": tokens(*previous_ids)}
    return {"ModifiedNode": node}


def account_root_node() -> Dict[str, Any]:
    return {
        "ModifiedNode": {
            "LedgerEntryType": "AccountRoot",
            "FinalFields": {"Account": ISSUER, "MintedNFTokens": 2},
            "PreviousFields": {"MintedNFTokens": 1}
        }
    }


def deleted_offer(nft_id: str, owner: str = ISSUER) -> Dict[str, Any]:
    return {
        "DeletedNode": {
            "LedgerEntryType": "NFTokenOffer",
            "FinalFields": {"NFTokenID": nft_id, "Owner": owner, "Amount": "1000000"}
        }
    }


def meta(*nodes, result: str = "tesSUCCESS") -> Dict[str, Any]:
    return {"AffectedNodes": list(nodes), "TransactionResult": result}


# =============================================================================
# STREAM MESSAGES
# =============================================================================

def stream_message(tx_json: Dict[str, Any], tx_meta: Dict[str, Any],
                   tx_hash: str = "ABCDEF", validated: bool = True) -> Dict[str, Any]:
    return {
        "type": "transaction",
        "validated": validated,
        "ledger_index": 90000001,
        "hash": tx_hash,
        "tx_json": tx_json,
        "meta": tx_meta
    }


def mint_message(account: str = ISSUER, taxon: int = TAXON, issuer: Optional[str] = None,
                 new_ids=(NFT_A,), result: str = "tesSUCCESS") -> Dict[str, Any]:
    tx_json = {
        "TransactionType": "NFTokenMint",
        "Account": account,
        "NFTokenTaxon": taxon,
        "URI": to_hex(METADATA_URI),
        "Flags": 8
    }
    if issuer is not None:
        tx_json["Issuer"] = issuer
    return stream_message(tx_json, meta(account_root_node(), created_page(*new_ids), result=result),
                          tx_hash="MINT" + "".join(i[-2:] for i in new_ids))


def burn_message(nft_id: str = NFT_A, account: str = ISSUER) -> Dict[str, Any]:
    tx_json = {"TransactionType": "NFTokenBurn", "Account": account, "NFTokenID": nft_id}
    return stream_message(tx_json, meta(modified_page([], [nft_id])), tx_hash="BURN" + nft_id[-2:])


def accept_offer_message(nft_id: str = NFT_A, buyer: str = BUYER) -> Dict[str, Any]:
    tx_json = {
        "TransactionType": "NFTokenAcceptOffer",
        "Account": buyer,
        "NFTokenSellOffer": "OFFERINDEX"
    }
    return stream_message(tx_json, meta(deleted_offer(nft_id)), tx_hash="ACCEPT" + nft_id[-2:])


def transaction(message: Dict[str, Any]) -> LedgerTransaction:
    tx = LedgerTransaction.from_stream(message)
    assert tx is not None
    return tx


# =============================================================================
# FAKE LEDGER
# =============================================================================

class FakeLedger:
    """Stands in for LedgerClient.nft_info; misses are returned as None."""

    def __init__(self, uris: Optional[Dict[str, str]] = None, misses_before_hit: int = 0):
        self._uris = dict(uris or {})
        self._misses_left: Dict[str, int] = {}
        self._misses_before_hit = misses_before_hit
        self.calls: List[str] = []

    async def nft_info(self, nft_id: str) -> Optional[NFTokenInfo]:
        self.calls.append(nft_id)
        if nft_id not in self._uris:
            return None
        left = self._misses_left.setdefault(nft_id, self._misses_before_hit)
        if left > 0:
            self._misses_left[nft_id] = left - 1
            return None
        return NFTokenInfo(nft_id=nft_id, uri_hex=self._uris[nft_id], owner=ISSUER, issuer=ISSUER, taxon=TAXON)
