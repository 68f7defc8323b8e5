import asyncio

import pytest

from campus_market.adapters.store.memory_store import InMemoryDocumentStore
from campus_market.domain.documents import BIDS

from conftest import ALICE, BOB, SELLER


class GatedStore(InMemoryDocumentStore):
    """Holds the next bids query at its await until the gate opens."""

    def __init__(self):
        super().__init__()
        self.gate = None

    async def query(self, query):
        docs = await super().query(query)
        if self.gate is not None and query.collection == BIDS:
            gate, self.gate = self.gate, None
            await gate.wait()
        return docs


@pytest.fixture
def store():
    return GatedStore()


@pytest.mark.asyncio
async def test_read_overlapping_a_bid_does_not_cache_stale_list(ledger, store, listing_id, notifier):
    await ledger.place_bid(listing_id, ALICE, 10)

    gate = asyncio.Event()
    store.gate = gate
    reader = asyncio.create_task(ledger.list_bids_for_listing(listing_id))
    await asyncio.sleep(0)
    assert store.gate is None  # the reader is parked inside its query

    await ledger.place_bid(listing_id, BOB, 20)
    gate.set()
    stale = await reader
    assert [b.amount for b in stale] == [10]

    fresh = await ledger.list_bids_for_listing(listing_id)
    assert [b.amount for b in fresh] == [20, 10]
    await notifier.drain()


@pytest.mark.asyncio
async def test_seller_read_overlapping_a_bid_does_not_cache_stale_list(ledger, store, listing_id, notifier):
    await ledger.place_bid(listing_id, ALICE, 10)

    gate = asyncio.Event()
    store.gate = gate
    reader = asyncio.create_task(ledger.list_bids_for_seller(SELLER))
    await asyncio.sleep(0)

    await ledger.place_bid(listing_id, BOB, 20)
    gate.set()
    await reader

    fresh = await ledger.list_bids_for_seller(SELLER)
    assert [sb.bid.amount for sb in fresh] == [20, 10]
    await notifier.drain()


@pytest.mark.asyncio
async def test_callers_cannot_mutate_cached_bid_lists(ledger, listing_id, notifier):
    await ledger.place_bid(listing_id, ALICE, 10)

    first = await ledger.list_bids_for_listing(listing_id)
    first.clear()
    assert [b.amount for b in await ledger.list_bids_for_listing(listing_id)] == [10]

    mine = await ledger.list_bids_for_seller(SELLER)
    mine.clear()
    assert len(await ledger.list_bids_for_seller(SELLER)) == 1
    await notifier.drain()
