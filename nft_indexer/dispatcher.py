"""
Event Classifier and Dispatcher

Decides what each ledger transaction means for the tracked collection and
applies it to the store.

DESIGN:
=======
1. Classification is pure and synchronous - irrelevant transactions never
   reach a queue
2. Relevant work is split into one item per NFT identifier and sharded by
   that identifier over bounded queues, one worker per shard, so events for
   one token are applied in delivery order while different tokens proceed
   concurrently
3. A mint is processed strictly in sequence: diff -> settle delay -> lookup
   -> decode -> fetch -> schema -> upsert
4. Per-event failures are logged and dropped; the workers keep running
"""

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Optional
import asyncio
import logging
import zlib

from .config import IndexerConfig
from .contracts import (
    Classification, FetchStatus, Intent, LedgerTransaction, NFTokenInfo,
    NFTRecord, TransactionType
)
from .diff import extract_new_token_ids, extract_offer_token_ids
from .ledger import LedgerClient
from .metadata import MetadataResolver, decode_hex_uri
from .schema import SchemaManager
from .storage import NFTStore


logger = logging.getLogger(__name__)


def shard_for(nft_id: str, shards: int) -> int:
    """Shard index for an NFT identifier."""
    return zlib.crc32(nft_id.encode('utf-8')) % shards


# =============================================================================
# CLASSIFICATION
# =============================================================================

class TransactionClassifier:
    """
    Maps a transaction to at most one Intent for one issuer and taxon.

    Never raises on missing or malformed fields.
    """

    def __init__(self, issuer: str, taxon: int):
        self._issuer = issuer
        self._taxon = taxon

    def classify(self, tx: LedgerTransaction) -> Optional[Classification]:
        if not tx.validated or not tx.succeeded:
            return None

        tx_type = tx.transaction_type

        if tx_type == TransactionType.NFTOKEN_BURN.value:
            nft_id = tx.nft_id
            if not isinstance(nft_id, str) or not nft_id:
                return None
            return Classification(Intent.BURN, tx, (nft_id,))

        if tx_type == TransactionType.NFTOKEN_MINT.value:
            if tx.taxon != self._taxon:
                return None
            if tx.account == self._issuer:
                intent = Intent.MINT
            elif tx.issuer == self._issuer:
                intent = Intent.AUTHORIZED_MINT
            else:
                return None
            return Classification(intent, tx, tuple(extract_new_token_ids(tx.meta)))

        if tx_type == TransactionType.NFTOKEN_ACCEPT_OFFER.value:
            if not tx.account:
                return None
            nft_ids = tuple(extract_offer_token_ids(tx.meta))
            if not nft_ids:
                return None
            return Classification(Intent.TRANSFER, tx, nft_ids)

        return None


# =============================================================================
# DISPATCHER
# =============================================================================

@dataclass
class DispatchStats:
    """Running counters for one dispatcher."""
    submitted: int = 0
    ignored: int = 0
    mints_detected: int = 0
    nfts_stored: int = 0
    lookups_missed: int = 0
    fetch_failures: int = 0
    transfers_applied: int = 0
    burns_applied: int = 0
    untracked_dropped: int = 0
    errors: int = 0


class EventDispatcher:
    """
    Routes classified transactions to their handlers.

    Collaborators are passed in; the dispatcher holds no global state.
    """

    def __init__(
        self,
        config: IndexerConfig,
        ledger: LedgerClient,
        resolver: MetadataResolver,
        store: NFTStore,
        schema: Optional[SchemaManager] = None
    ):
        self._config = config
        self._ledger = ledger
        self._resolver = resolver
        self._store = store
        self._schema = schema or SchemaManager(store)
        self._classifier = TransactionClassifier(config.issuer, config.taxon)
        self._queues: List[asyncio.Queue] = []
        self._workers: List[asyncio.Task] = []
        self._stats = DispatchStats()

    @property
    def stats(self) -> DispatchStats:
        return self._stats

    def get_stats(self) -> dict:
        return asdict(self._stats)

    # =========================================================================
    # WORKER POOL
    # =========================================================================

    def start(self):
        """Create the shard queues and their workers."""
        if self._workers:
            return
        self._queues = [
            asyncio.Queue(maxsize=self._config.queue_size)
            for _ in range(self._config.worker_count)
        ]
        self._workers = [
            asyncio.create_task(self._worker(queue), name=f"nft-worker-{i}")
            for i, queue in enumerate(self._queues)
        ]

    async def stop(self):
        """Finish queued work, then stop the workers."""
        for queue in self._queues:
            await queue.join()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queues = []

    async def submit(self, tx: LedgerTransaction) -> Optional[Classification]:
        """
        Classify a transaction and queue it if relevant.

        Each NFT id becomes its own work item on its own shard. Waits while
        a target shard is full.
        """
        classification = self._classifier.classify(tx)
        if classification is None:
            self._stats.ignored += 1
            return None

        if not self._queues:
            raise RuntimeError("Dispatcher not started")

        self._stats.submitted += 1
        if classification.intent in (Intent.MINT, Intent.AUTHORIZED_MINT):
            self._announce_mint(classification)

        for item in classification.per_token():
            shard = shard_for(item.nft_ids[0], len(self._queues))
            await self._queues[shard].put(item)
        return classification

    def _announce_mint(self, classification: Classification):
        tx = classification.transaction
        self._stats.mints_detected += 1
        if classification.intent == Intent.AUTHORIZED_MINT:
            logger.info("New authorized mint by %s for %s detected (ledger %s, tx %s)",
                        tx.account, self._config.issuer, tx.ledger_index, tx.tx_hash)
        else:
            logger.info("New mint by %s detected (ledger %s, tx %s)",
                        tx.account, tx.ledger_index, tx.tx_hash)
        if not classification.nft_ids:
            logger.info("No new NFT IDs found in meta.")

    async def _worker(self, queue: asyncio.Queue):
        while True:
            classification = await queue.get()
            try:
                await self.handle(classification)
            except Exception:
                self._stats.errors += 1
                logger.exception(
                    "Failed to apply %s from transaction %s",
                    classification.intent.value, classification.transaction.tx_hash
                )
            finally:
                queue.task_done()

    # =========================================================================
    # HANDLERS
    # =========================================================================

    async def handle(self, classification: Classification):
        """Apply one classified transaction."""
        intent = classification.intent
        if intent == Intent.BURN:
            await self._handle_burn(classification)
        elif intent == Intent.TRANSFER:
            await self._handle_transfer(classification)
        elif intent in (Intent.MINT, Intent.AUTHORIZED_MINT):
            await self._handle_mint(classification)

    async def _handle_burn(self, classification: Classification):
        for nft_id in classification.nft_ids:
            if await asyncio.to_thread(self._store.mark_burned, nft_id):
                self._stats.burns_applied += 1
                logger.info("Updated NFT %s: burned", nft_id)
            else:
                self._stats.untracked_dropped += 1

    async def _handle_transfer(self, classification: Classification):
        new_owner = classification.transaction.account
        for nft_id in classification.nft_ids:
            if await asyncio.to_thread(self._store.update_owner, nft_id, new_owner):
                self._stats.transfers_applied += 1
                logger.info("Updated NFT %s: new owner %s", nft_id, new_owner)
            else:
                self._stats.untracked_dropped += 1

    async def _handle_mint(self, classification: Classification):
        tx = classification.transaction
        for nft_id in classification.nft_ids:
            info = await self._lookup(nft_id)
            if info is None:
                self._stats.lookups_missed += 1
                logger.warning("No nft_info for %s, skipping", nft_id)
                continue

            uri = decode_hex_uri(info.uri_hex)
            logger.info("NFT %s URI: %s", nft_id, uri)

            result, metadata = await self._resolver.fetch(uri)
            if result.status not in (FetchStatus.SUCCESS, FetchStatus.EMPTY_URI):
                self._stats.fetch_failures += 1

            attributes = await self._schema.map_attributes(metadata.attributes)

            # Initial owner is the submitting account, also for authorized mints
            record = NFTRecord(
                nft_id=nft_id,
                owner=tx.account,
                name=metadata.name,
                image=metadata.image,
                is_burned=False,
                attributes=tuple(attributes.items())
            )
            await asyncio.to_thread(self._store.upsert, record)
            self._stats.nfts_stored += 1
            logger.info("Stored NFT %s in database.", nft_id)

    async def _lookup(self, nft_id: str) -> Optional[NFTokenInfo]:
        """nft_info after the settle delay, retried up to lookup_attempts."""
        for attempt in range(1, self._config.lookup_attempts + 1):
            await asyncio.sleep(self._config.settle_delay)
            info = await self._ledger.nft_info(nft_id)
            if info is not None:
                return info
            if attempt < self._config.lookup_attempts:
                logger.debug("nft_info miss for %s (attempt %d)", nft_id, attempt)
        return None
