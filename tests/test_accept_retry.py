import logging

import pytest

from campus_market.adapters.store.memory_store import InMemoryDocumentStore
from campus_market.domain.documents import BIDS, LISTINGS
from campus_market.domain.errors import AcceptBidIncomplete, UpstreamUnavailable
from campus_market.domain.models import BidStatus

from conftest import ALICE, BOB, SELLER


class FlakyStore(InMemoryDocumentStore):
    """Fails the next ``fail_commits`` batches; ``lose_ack`` applies one and then reports failure."""

    def __init__(self):
        super().__init__()
        self.fail_commits = 0
        self.lose_ack = False
        self.commit_calls = 0

    async def commit(self, writes):
        self.commit_calls += 1
        if self.fail_commits:
            self.fail_commits -= 1
            raise UpstreamUnavailable("database unreachable")
        await super().commit(writes)
        if self.lose_ack:
            self.lose_ack = False
            raise UpstreamUnavailable("connection reset after write")


@pytest.fixture
def store():
    return FlakyStore()


@pytest.mark.asyncio
async def test_accept_retries_with_backoff(ledger, lifecycle, store, sleeps, listing_id, notifier):
    outbid = await ledger.place_bid(listing_id, ALICE, 10)
    top = await ledger.place_bid(listing_id, BOB, 15)
    await notifier.drain()

    store.fail_commits = 2
    accepted = await lifecycle.accept_bid(SELLER, top.id, listing_id)

    assert accepted.status is BidStatus.ACCEPTED
    assert sleeps == [0.5, 1.0]
    assert store.commit_calls == 3
    assert (await store.get(BIDS, outbid.id)).data["status"] == "rejected"


@pytest.mark.asyncio
async def test_exhausted_retries_leave_nothing_applied(ledger, lifecycle, store, sleeps, listing_id, notifier, caplog):
    bid = await ledger.place_bid(listing_id, ALICE, 10)
    other = await ledger.place_bid(listing_id, BOB, 12)
    await notifier.drain()

    store.fail_commits = 10
    with caplog.at_level(logging.CRITICAL):
        with pytest.raises(AcceptBidIncomplete) as excinfo:
            await lifecycle.accept_bid(SELLER, bid.id, listing_id)

    assert excinfo.value.attempts == 3
    assert isinstance(excinfo.value, UpstreamUnavailable)
    assert sleeps == [0.5, 1.0]
    assert any(r.levelno == logging.CRITICAL for r in caplog.records)
    assert (await store.get(LISTINGS, listing_id)).data["status"] == "active"
    assert (await store.get(BIDS, bid.id)).data["status"] == "active"
    assert (await store.get(BIDS, other.id)).data["status"] == "active"


@pytest.mark.asyncio
async def test_lost_acknowledgement_is_detected_on_retry(ledger, lifecycle, store, sleeps, listing_id, notifier):
    bid = await ledger.place_bid(listing_id, ALICE, 10)
    await notifier.drain()

    store.lose_ack = True
    accepted = await lifecycle.accept_bid(SELLER, bid.id, listing_id)

    assert accepted.status is BidStatus.ACCEPTED
    assert store.commit_calls == 1
    assert sleeps == [0.5]
    assert (await store.get(LISTINGS, listing_id)).data["acceptedBidId"] == bid.id
