"""
Indexer Service

Builds the collaborators from one IndexerConfig and runs the subscription
loop.
"""

from __future__ import annotations
from typing import Optional
from pathlib import Path
import logging

import httpx

from .config import IndexerConfig
from .contracts import LedgerTransaction, TransactionType
from .dispatcher import EventDispatcher
from .ledger import LedgerClient, LedgerConnectionError
from .metadata import MetadataResolver
from .storage import NFTStore


logger = logging.getLogger(__name__)

STREAMS = ('transactions',)
WATCHED_TYPES = tuple(t.value for t in TransactionType)


class IndexerService:
    """
    Coordinates the ledger subscription, metadata fetching and storage.

    DESIGN:
    =======
    1. Connect and subscribe - failure here is fatal
    2. Feed every transaction message to the dispatcher
    3. When the stream ends, drain queued work and release connections
    """

    def __init__(
        self,
        config: IndexerConfig,
        ledger: Optional[LedgerClient] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        store: Optional[NFTStore] = None
    ):
        self._config = config
        self._store = store or NFTStore(Path(config.db_path))
        self._ledger = ledger or LedgerClient(
            config.ledger_url,
            request_timeout=config.request_timeout,
            stream_buffer=config.stream_buffer
        )
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.fetch_timeout)
        self._dispatcher = EventDispatcher(
            config=config,
            ledger=self._ledger,
            resolver=MetadataResolver(self._http, config.ipfs_gateway, config.user_agent),
            store=self._store
        )

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    @property
    def store(self) -> NFTStore:
        return self._store

    async def run(self):
        """
        Run until the ledger connection closes.

        Raises LedgerError if the connection or subscription cannot be
        established, and LedgerConnectionError once the stream ends.
        """
        try:
            await self._ledger.connect()
            await self._ledger.subscribe(STREAMS)
            logger.info(
                "Listening for %s transactions for issuer %s and taxon %s...",
                '/'.join(WATCHED_TYPES), self._config.issuer, self._config.taxon
            )
            self._dispatcher.start()
            async for message in self._ledger.transactions():
                tx = LedgerTransaction.from_stream(message)
                if tx is not None:
                    await self._dispatcher.submit(tx)
            raise LedgerConnectionError(f"Connection to {self._config.ledger_url} closed")
        finally:
            await self.shutdown()

    async def shutdown(self):
        await self._dispatcher.stop()
        await self._ledger.close()
        if self._owns_http:
            await self._http.aclose()
        logger.info("Indexer stopped: %s", self.get_stats())

    def get_stats(self) -> dict:
        """Get dispatch and storage statistics."""
        return {
            'dispatch': self._dispatcher.get_stats(),
            'storage': self._store.get_stats(),
            'ledger': {'dropped': self._ledger.dropped}
        }
