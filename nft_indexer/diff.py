"""
Ledger Diff Extraction

Reads the `AffectedNodes` of a transaction's metadata and answers two
questions: which NFTs came into existence, and which NFTs were referenced by
offers that were consumed.

PRINCIPLES:
===========
1. Parse with maximum tolerance - a malformed node is skipped, never fatal
2. Encounter order is preserved, results are not sorted
3. Each identifier is reported once
"""

from __future__ import annotations
from typing import Any, Dict, Iterator, List, Optional

from .contracts import LedgerEntryType


def _affected_nodes(meta: Optional[Dict[str, Any]]) -> Iterator[Dict[str, Any]]:
    if not isinstance(meta, dict):
        return
    nodes = meta.get('AffectedNodes')
    if not isinstance(nodes, list):
        return
    for node in nodes:
        if isinstance(node, dict):
            yield node


def _token_ids(tokens: Any) -> List[str]:
    """IDs from an `NFTokens` list; entries without an ID are dropped."""
    if not isinstance(tokens, list):
        return []
    ids = []
    for token_obj in tokens:
        if not isinstance(token_obj, dict):
            continue
        token = token_obj.get('NFToken')
        if isinstance(token, dict) and isinstance(token.get('NFTokenID'), str):
            ids.append(token['NFTokenID'])
    return ids


def _fields(entry: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = entry.get(name)
    return value if isinstance(value, dict) else {}


def extract_new_token_ids(meta: Optional[Dict[str, Any]]) -> List[str]:
    """
    NFT IDs created by a transaction.

    A created NFTokenPage contributes every token it holds. A modified page
    contributes the tokens in FinalFields that were not in PreviousFields.
    A modified page without PreviousFields.NFTokens had no token change.
    """
    page_type = LedgerEntryType.NFTOKEN_PAGE.value
    new_ids: List[str] = []
    seen = set()

    def add(nft_id: str):
        if nft_id not in seen:
            seen.add(nft_id)
            new_ids.append(nft_id)

    for node in _affected_nodes(meta):
        created = node.get('CreatedNode')
        if isinstance(created, dict) and created.get('LedgerEntryType') == page_type:
            for nft_id in _token_ids(_fields(created, 'NewFields').get('NFTokens')):
                add(nft_id)
            continue

        modified = node.get('ModifiedNode')
        if isinstance(modified, dict) and modified.get('LedgerEntryType') == page_type:
            final_fields = modified.get('FinalFields')
            if not isinstance(final_fields, dict):
                continue
            final_ids = _token_ids(final_fields.get('NFTokens'))
            previous_tokens = _fields(modified, 'PreviousFields').get('NFTokens')
            if previous_tokens is None:
                continue
            previous_ids = set(_token_ids(previous_tokens))
            for nft_id in final_ids:
                if nft_id not in previous_ids:
                    add(nft_id)

    return new_ids


def extract_offer_token_ids(meta: Optional[Dict[str, Any]]) -> List[str]:
    """NFT IDs referenced by NFTokenOffer entries deleted by a transaction."""
    offer_type = LedgerEntryType.NFTOKEN_OFFER.value
    ids: List[str] = []

    for node in _affected_nodes(meta):
        deleted = node.get('DeletedNode')
        if not isinstance(deleted, dict) or deleted.get('LedgerEntryType') != offer_type:
            continue
        nft_id = _fields(deleted, 'FinalFields').get('NFTokenID')
        if isinstance(nft_id, str) and nft_id not in ids:
            ids.append(nft_id)

    return ids
