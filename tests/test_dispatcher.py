"""
Dispatcher Scenario Tests

End-to-end pipeline behaviour against a real SQLite store, a fake ledger
and a mocked metadata server.
"""

import asyncio

import httpx
import pytest

from nft_indexer.dispatcher import EventDispatcher, shard_for
from nft_indexer.metadata import MetadataResolver
from nft_indexer.storage import NFTStore

from .fixtures import (
    BUYER, ISSUER, METADATA_URI, METADATA_URL, MINTER, NFT_A, NFT_B, NFT_UNKNOWN,
    FakeLedger, accept_offer_message, burn_message, make_config, mint_message,
    to_hex, transaction
)


ART_1 = {
    "name": "Art #1",
    "image": "ipfs://abc",
    "attributes": [{"trait_type": "Background", "value": "Blue"}]
}


def metadata_server(documents, calls=None):
    """MockTransport serving JSON documents by URL; unknown URLs are 404."""
    def handler(request):
        if calls is not None:
            calls.append(str(request.url))
        url = str(request.url)
        if url in documents:
            return httpx.Response(200, json=documents[url])
        return httpx.Response(404)
    return httpx.MockTransport(handler)


@pytest.fixture
def store(tmp_path):
    return NFTStore(tmp_path / "nfts.db")


def make_dispatcher(store, ledger, transport, **config):
    resolver = MetadataResolver(httpx.AsyncClient(transport=transport))
    return EventDispatcher(make_config(**config), ledger, resolver, store)


async def apply(dispatcher, message):
    """Classify and handle one message inline."""
    classification = dispatcher._classifier.classify(transaction(message))
    if classification is not None:
        await dispatcher.handle(classification)
    return classification


# =============================================================================
# MINT SCENARIOS
# =============================================================================

class TestMintPipeline:

    @pytest.mark.asyncio
    async def test_mint_with_metadata(self, store):
        ledger = FakeLedger({NFT_A: to_hex(METADATA_URI)})
        dispatcher = make_dispatcher(store, ledger, metadata_server({METADATA_URL: ART_1}))

        await apply(dispatcher, mint_message())

        assert store.count() == 1
        row = store.get(NFT_A)
        assert row["owner"] == ISSUER
        assert row["name"] == "Art #1"
        assert row["image"] == "https://ipfs.io/ipfs/abc"
        assert row["background"] == "Blue"
        assert row["is_burned"] == 0
        assert dispatcher.stats.nfts_stored == 1

    @pytest.mark.asyncio
    async def test_mint_with_failed_metadata_fetch(self, store):
        ledger = FakeLedger({NFT_A: to_hex(METADATA_URI)})
        dispatcher = make_dispatcher(store, ledger, metadata_server({}))

        await apply(dispatcher, mint_message())

        row = store.get(NFT_A)
        assert row["name"] == ""
        assert row["image"] == ""
        assert store.list_columns() == ["nft_id", "is_burned", "owner", "name", "image"]
        assert dispatcher.stats.fetch_failures == 1

    @pytest.mark.asyncio
    async def test_undecodable_uri_records_blank_nft(self, store):
        calls = []
        ledger = FakeLedger({NFT_A: "ZZZZ"})
        dispatcher = make_dispatcher(store, ledger, metadata_server({}, calls))

        await apply(dispatcher, mint_message())

        assert calls == []
        assert store.get(NFT_A)["name"] == ""

    @pytest.mark.asyncio
    async def test_authorized_mint_owner_is_minter(self, store):
        ledger = FakeLedger({NFT_A: to_hex(METADATA_URI)})
        dispatcher = make_dispatcher(store, ledger, metadata_server({METADATA_URL: ART_1}))

        await apply(dispatcher, mint_message(account=MINTER, issuer=ISSUER))

        assert store.get(NFT_A)["owner"] == MINTER

    @pytest.mark.asyncio
    async def test_redelivered_mint_does_not_duplicate(self, store):
        ledger = FakeLedger({NFT_A: to_hex(METADATA_URI)})
        dispatcher = make_dispatcher(store, ledger, metadata_server({METADATA_URL: ART_1}))

        await apply(dispatcher, mint_message())
        await apply(dispatcher, mint_message())

        assert store.count() == 1
        assert store.list_columns().count("background") == 1

    @pytest.mark.asyncio
    async def test_lookup_miss_skips_identifier(self, store):
        ledger = FakeLedger({NFT_B: to_hex(METADATA_URI)})
        dispatcher = make_dispatcher(store, ledger, metadata_server({METADATA_URL: ART_1}))

        await apply(dispatcher, mint_message(new_ids=(NFT_A, NFT_B)))

        assert store.get(NFT_A) is None
        assert store.get(NFT_B)["name"] == "Art #1"
        assert ledger.calls == [NFT_A, NFT_B]
        assert dispatcher.stats.lookups_missed == 1

    @pytest.mark.asyncio
    async def test_bounded_lookup_retry(self, store):
        ledger = FakeLedger({NFT_A: to_hex(METADATA_URI)}, misses_before_hit=2)
        dispatcher = make_dispatcher(store, ledger, metadata_server({METADATA_URL: ART_1}),
                                     lookup_attempts=3)

        await apply(dispatcher, mint_message())

        assert ledger.calls == [NFT_A, NFT_A, NFT_A]
        assert store.get(NFT_A) is not None

    @pytest.mark.asyncio
    async def test_single_attempt_gives_up(self, store):
        ledger = FakeLedger({NFT_A: to_hex(METADATA_URI)}, misses_before_hit=1)
        dispatcher = make_dispatcher(store, ledger, metadata_server({METADATA_URL: ART_1}))

        await apply(dispatcher, mint_message())

        assert ledger.calls == [NFT_A]
        assert store.get(NFT_A) is None


# =============================================================================
# BURN AND TRANSFER SCENARIOS
# =============================================================================

class TestMutations:

    @pytest.mark.asyncio
    async def test_burn_tracked_and_untracked(self, store):
        ledger = FakeLedger({NFT_A: to_hex(METADATA_URI)})
        dispatcher = make_dispatcher(store, ledger, metadata_server({METADATA_URL: ART_1}))
        await apply(dispatcher, mint_message())

        await apply(dispatcher, burn_message(NFT_A))
        await apply(dispatcher, burn_message(NFT_UNKNOWN))

        assert store.get(NFT_A)["is_burned"] == 1
        assert store.get(NFT_UNKNOWN) is None
        assert store.count() == 1
        assert dispatcher.stats.burns_applied == 1
        assert dispatcher.stats.untracked_dropped == 1

    @pytest.mark.asyncio
    async def test_transfer_tracked_and_untracked(self, store):
        ledger = FakeLedger({NFT_A: to_hex(METADATA_URI)})
        dispatcher = make_dispatcher(store, ledger, metadata_server({METADATA_URL: ART_1}))
        await apply(dispatcher, mint_message())

        await apply(dispatcher, accept_offer_message(NFT_A, BUYER))
        await apply(dispatcher, accept_offer_message(NFT_UNKNOWN, BUYER))

        assert store.get(NFT_A)["owner"] == BUYER
        assert store.get(NFT_UNKNOWN) is None
        assert dispatcher.stats.transfers_applied == 1


# =============================================================================
# WORKER POOL
# =============================================================================

class TestWorkerPool:

    @pytest.mark.asyncio
    async def test_lifecycle_for_one_token_keeps_delivery_order(self, store):
        ledger = FakeLedger({NFT_A: to_hex(METADATA_URI)})
        dispatcher = make_dispatcher(store, ledger, metadata_server({METADATA_URL: ART_1}),
                                     settle_delay=0.05, worker_count=4)
        dispatcher.start()

        # Mint is slow (settle delay), the transfer and burn must still wait for it
        await dispatcher.submit(transaction(mint_message()))
        await dispatcher.submit(transaction(accept_offer_message(NFT_A, BUYER)))
        await dispatcher.submit(transaction(burn_message(NFT_A)))
        await dispatcher.stop()

        row = store.get(NFT_A)
        assert row["owner"] == BUYER
        assert row["is_burned"] == 1

    @pytest.mark.asyncio
    async def test_multi_token_mint_orders_each_token_on_its_own_shard(self, store):
        candidates = [NFT_A[:-8] + f"{i:08X}" for i in range(1, 64)]
        first = candidates[0]
        second = next(c for c in candidates if shard_for(c, 2) != shard_for(first, 2))

        ledger = FakeLedger({first: to_hex(METADATA_URI), second: to_hex(METADATA_URI)})
        dispatcher = make_dispatcher(store, ledger, metadata_server({METADATA_URL: ART_1}),
                                     settle_delay=0.05, worker_count=2)
        dispatcher.start()

        # The transfer of the second token must wait for that token's mint
        await dispatcher.submit(transaction(mint_message(new_ids=(first, second))))
        await dispatcher.submit(transaction(accept_offer_message(second, BUYER)))
        await dispatcher.stop()

        assert store.get(first)["owner"] == ISSUER
        assert store.get(second)["owner"] == BUYER
        stats = dispatcher.get_stats()
        assert stats["mints_detected"] == 1
        assert stats["nfts_stored"] == 2
        assert stats["untracked_dropped"] == 0

    @pytest.mark.asyncio
    async def test_irrelevant_transactions_never_queued(self, store):
        dispatcher = make_dispatcher(store, FakeLedger(), metadata_server({}))
        dispatcher.start()

        result = await dispatcher.submit(transaction(mint_message(taxon=999)))
        await dispatcher.stop()

        assert result is None
        assert dispatcher.get_stats()["ignored"] == 1
        assert dispatcher.get_stats()["submitted"] == 0

    @pytest.mark.asyncio
    async def test_store_failure_does_not_stop_workers(self, store, monkeypatch):
        ledger = FakeLedger({NFT_A: to_hex(METADATA_URI), NFT_B: to_hex(METADATA_URI)})
        dispatcher = make_dispatcher(store, ledger, metadata_server({METADATA_URL: ART_1}), worker_count=1)

        real_upsert = store.upsert

        def flaky_upsert(record):
            if record.nft_id == NFT_A:
                raise RuntimeError("disk full")
            real_upsert(record)

        monkeypatch.setattr(store, "upsert", flaky_upsert)
        dispatcher.start()

        await dispatcher.submit(transaction(mint_message(new_ids=(NFT_A,))))
        await dispatcher.submit(transaction(mint_message(new_ids=(NFT_B,))))
        await dispatcher.stop()

        assert store.get(NFT_A) is None
        assert store.get(NFT_B) is not None
        assert dispatcher.stats.errors == 1

    @pytest.mark.asyncio
    async def test_submit_before_start_raises(self, store):
        dispatcher = make_dispatcher(store, FakeLedger(), metadata_server({}))
        with pytest.raises(RuntimeError):
            await dispatcher.submit(transaction(burn_message(NFT_A)))

    @pytest.mark.asyncio
    async def test_full_shard_applies_back_pressure(self, store):
        release = asyncio.Event()

        class BlockingLedger(FakeLedger):
            async def nft_info(self, nft_id):
                await release.wait()
                return await super().nft_info(nft_id)

        ledger = BlockingLedger({NFT_A: to_hex(METADATA_URI)})
        dispatcher = make_dispatcher(store, ledger, metadata_server({METADATA_URL: ART_1}),
                                     worker_count=1, queue_size=1)
        dispatcher.start()

        await dispatcher.submit(transaction(mint_message()))   # taken by the worker
        await asyncio.sleep(0)
        await dispatcher.submit(transaction(burn_message(NFT_A)))   # fills the queue
        blocked = asyncio.create_task(dispatcher.submit(transaction(burn_message(NFT_B))))
        await asyncio.sleep(0.05)
        assert not blocked.done()

        release.set()
        await blocked
        await dispatcher.stop()

        assert store.get(NFT_A)["is_burned"] == 1
