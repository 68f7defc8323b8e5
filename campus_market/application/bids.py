import logging
from datetime import datetime, timezone
from typing import List, Optional

from ..domain.documents import BIDS, LISTINGS, Query, SERVER_TIMESTAMP, chunked
from ..domain.errors import BidTooLow, InvalidTransition, NotFound, SelfBid
from ..domain.models import Bid, BidStatus, Listing, ListingStatus, SellerBid, parse_amount
from ..domain.ports import DocumentStorePort
from ..infrastructure.cache import CacheService
from .cache_keys import bids_key, invalidate_listing, seller_bids_key
from .messaging import BidNotifier
from .users import UserDirectory

logger = logging.getLogger(__name__)

IN_QUERY_LIMIT = 10
EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def ranking_key(bid: Bid) -> tuple:
    """Highest amount first; equal amounts resolve to the earliest bid."""
    return (-bid.amount, bid.created_at is None, bid.created_at or EPOCH, bid.id)


def recency_key(bid: Bid) -> tuple:
    return (bid.created_at or EPOCH, bid.id)


async def load_listing(store: DocumentStorePort, listing_id: str) -> Listing:
    doc = await store.get(LISTINGS, listing_id)
    if doc is None:
        raise NotFound("Listing not found")
    return Listing.from_document(doc)


async def load_bid(store: DocumentStorePort, bid_id: str) -> Bid:
    doc = await store.get(BIDS, bid_id)
    if doc is None:
        raise NotFound("Bid not found")
    return Bid.from_document(doc)


async def fetch_active_bids(store: DocumentStorePort, listing_id: str) -> List[Bid]:
    docs = await store.query(
        Query(BIDS).where("listingId", "==", listing_id).where("status", "==", BidStatus.ACTIVE.value)
    )
    return sorted((Bid.from_document(d) for d in docs), key=ranking_key)


class BidLedger:
    def __init__(
        self,
        store: DocumentStorePort,
        cache: CacheService,
        users: UserDirectory,
        notifier: Optional[BidNotifier] = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.users = users
        self.notifier = notifier

    async def place_bid(self, listing_id: str, bidder_id: str, amount: float) -> Bid:
        amount = parse_amount(amount, "Bid amount")
        # Always read the listing and bids from the store, never the cache.
        listing = await load_listing(self.store, listing_id)
        if listing.owner_id == bidder_id:
            raise SelfBid()
        if listing.status is not ListingStatus.ACTIVE:
            raise InvalidTransition(f"This listing is {listing.status.value} and no longer accepts bids")
        if not listing.accepts_bids:
            raise InvalidTransition("This listing does not accept bids")
        highest = await self.highest_active_bid(listing_id)
        if highest is not None and amount <= highest.amount:
            raise BidTooLow(amount, highest.amount)

        bidder_name = await self.users.display_name(bidder_id)
        doc = await self.store.add(BIDS, {
            "listingId": listing_id,
            "userId": bidder_id,
            "bidderName": bidder_name,
            "amount": amount,
            "status": BidStatus.ACTIVE.value,
            "createdAt": SERVER_TIMESTAMP,
        })
        bid = Bid.from_document(doc)
        invalidate_listing(self.cache, listing_id, listing.owner_id)
        logger.info("Bid %s of %.2f placed on listing %s by %s", bid.id, amount, listing_id, bidder_id)

        if self.notifier is not None:
            self.notifier.spawn(listing, bid)
        return bid

    async def highest_active_bid(self, listing_id: str) -> Optional[Bid]:
        bids = await fetch_active_bids(self.store, listing_id)
        return bids[0] if bids else None

    async def list_bids_for_listing(self, listing_id: str) -> List[Bid]:
        bids = await self.cache.get_or_load(bids_key(listing_id), lambda: fetch_active_bids(self.store, listing_id))
        return list(bids)

    async def list_bids_for_seller(self, seller_id: str) -> List[SellerBid]:
        async def load() -> List[SellerBid]:
            listing_docs = await self.store.query(Query(LISTINGS).where("userId", "==", seller_id))
            titles = {d.id: str(d.get("title") or "") for d in listing_docs}
            bids: List[Bid] = []
            for ids in chunked(sorted(titles), IN_QUERY_LIMIT):
                docs = await self.store.query(Query(BIDS).where("listingId", "in", ids))
                bids.extend(Bid.from_document(d) for d in docs)
            bids.sort(key=recency_key, reverse=True)
            return [SellerBid(bid=b, listing_title=titles[b.listing_id]) for b in bids]

        return list(await self.cache.get_or_load(seller_bids_key(seller_id), load))

    async def list_bids_for_bidder(self, bidder_id: str) -> List[Bid]:
        docs = await self.store.query(Query(BIDS).where("userId", "==", bidder_id))
        return sorted((Bid.from_document(d) for d in docs), key=recency_key, reverse=True)
