import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from ..domain.documents import BIDS, LISTINGS, PENDING, Query, SERVER_TIMESTAMP, Write
from ..domain.errors import (
    AcceptBidIncomplete,
    InvalidDocument,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    SelfModerationDenied,
    UpstreamUnavailable,
)
from ..domain.lifecycle import ListingAction, next_status
from ..domain.models import (
    Bid,
    BidStatus,
    Condition,
    Listing,
    ListingDraft,
    ListingStatus,
    PricingMode,
    Visibility,
    draft_to_document,
    normalize_price,
    parse_category,
    parse_enum,
)
from ..domain.ports import DocumentStorePort
from ..infrastructure.cache import CacheService
from .bids import EPOCH, fetch_active_bids, load_bid, load_listing
from .cache_keys import invalidate_listing
from .users import UserDirectory

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "description", "category", "condition", "pricing_mode", "price", "visibility", "images")


def _reject_writes(bids: List[Bid], keep: Optional[str] = None) -> List[Write]:
    return [
        Write.update(BIDS, b.id, {"status": BidStatus.REJECTED.value, "rejectedAt": SERVER_TIMESTAMP})
        for b in bids
        if b.id != keep and b.status is BidStatus.ACTIVE
    ]


class ListingLifecycle:
    def __init__(
        self,
        store: DocumentStorePort,
        cache: CacheService,
        users: UserDirectory,
        max_attempts: int = 5,
        retry_delay: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.cache = cache
        self.users = users
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self._sleep = sleep

    async def _owned_listing(self, actor_id: str, listing_id: str, verb: str) -> Listing:
        listing = await load_listing(self.store, listing_id)
        if listing.owner_id != actor_id:
            raise PermissionDenied(f"Only the seller can {verb} this listing")
        return listing

    # --- moderation ---

    async def submit_listing(self, owner_id: str, draft: ListingDraft) -> Listing:
        draft = draft.validated()
        seller_name = await self.users.display_name(owner_id)
        data = draft_to_document(draft, owner_id, seller_name)
        data["createdAt"] = SERVER_TIMESTAMP
        doc = await self.store.add(PENDING, data)
        logger.info("Listing %s submitted for review by %s", doc.id, owner_id)
        return Listing.from_document(doc)

    async def list_pending(self) -> List[Listing]:
        docs = await self.store.query(Query(PENDING).order("createdAt"))
        return [Listing.from_document(d) for d in docs]

    async def _pending_for_moderation(self, moderator_id: str, listing_id: str) -> Listing:
        await self.users.require_admin(moderator_id)
        doc = await self.store.get(PENDING, listing_id)
        if doc is None:
            if await self.store.get(LISTINGS, listing_id) is not None:
                raise InvalidTransition("This listing has already been reviewed")
            raise NotFound("Listing not found")
        listing = Listing.from_document(doc)
        if listing.owner_id == moderator_id:
            raise SelfModerationDenied()
        return listing

    async def approve_listing(self, moderator_id: str, listing_id: str) -> Listing:
        listing = await self._pending_for_moderation(moderator_id, listing_id)
        status = next_status(listing.status, ListingAction.APPROVE)
        pending_doc = await self.store.get(PENDING, listing_id)
        data = dict(pending_doc.data)
        data.update({"status": status.value, "approvedAt": SERVER_TIMESTAMP, "approvedBy": moderator_id})
        await self.store.commit([Write.set(LISTINGS, listing_id, data), Write.delete(PENDING, listing_id)])
        invalidate_listing(self.cache, listing_id, listing.owner_id)
        logger.info("Listing %s approved by %s", listing_id, moderator_id)
        return await load_listing(self.store, listing_id)

    async def reject_listing(self, moderator_id: str, listing_id: str) -> None:
        listing = await self._pending_for_moderation(moderator_id, listing_id)
        next_status(listing.status, ListingAction.REJECT)
        await self.store.delete(PENDING, listing_id)
        logger.info("Listing %s rejected by %s", listing_id, moderator_id)

    # --- owner transitions ---

    async def _close(self, listing: Listing, action: ListingAction, stamp_field: str) -> Listing:
        status = next_status(listing.status, action)
        competitors = await fetch_active_bids(self.store, listing.id)
        writes = [Write.update(LISTINGS, listing.id, {"status": status.value, stamp_field: SERVER_TIMESTAMP})]
        writes.extend(_reject_writes(competitors))
        await self.store.commit(writes)
        invalidate_listing(self.cache, listing.id, listing.owner_id)
        logger.info("Listing %s is now %s (%d open bids rejected)", listing.id, status.value, len(competitors))
        return await load_listing(self.store, listing.id)

    async def mark_sold(self, actor_id: str, listing_id: str) -> Listing:
        listing = await self._owned_listing(actor_id, listing_id, "mark as sold")
        return await self._close(listing, ListingAction.MARK_SOLD, "soldAt")

    async def delete_listing(self, actor_id: str, listing_id: str) -> Listing:
        listing = await self._owned_listing(actor_id, listing_id, "delete")
        return await self._close(listing, ListingAction.DELETE, "deletedAt")

    async def update_listing(self, actor_id: str, listing_id: str, changes: Dict[str, Any]) -> Listing:
        listing = await self._owned_listing(actor_id, listing_id, "edit")
        if listing.status is not ListingStatus.ACTIVE:
            raise InvalidTransition(f"Cannot edit a listing that is {listing.status.value}")
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise InvalidDocument(f"Cannot edit field(s): {', '.join(sorted(unknown))}")

        mode = parse_enum(PricingMode, changes.get("pricing_mode", listing.pricing_mode), "pricing mode")
        if listing.accepts_bids and mode is not PricingMode.BIDDING:
            if await self.store.query(Query(BIDS).where("listingId", "==", listing_id).take(1)):
                raise InvalidTransition("Cannot change the pricing of a listing that has received bids")
        update: Dict[str, Any] = {
            "pricingType": mode.value,
            "price": normalize_price(mode, changes.get("price", listing.price)),
            "updatedAt": SERVER_TIMESTAMP,
        }
        if "title" in changes:
            title = str(changes["title"] or "").strip()
            if not title:
                raise InvalidDocument("Title is required")
            update["title"] = title
        if "description" in changes:
            update["description"] = str(changes["description"] or "").strip()
        if "category" in changes:
            update["category"] = parse_category(changes["category"]).value
        if "condition" in changes:
            update["condition"] = parse_enum(Condition, changes["condition"], "condition").value
        if "visibility" in changes:
            update["visibility"] = parse_enum(Visibility, changes["visibility"], "visibility").value
        if "images" in changes:
            update["images"] = list(changes["images"] or [])
        await self.store.update(LISTINGS, listing_id, update)
        invalidate_listing(self.cache, listing_id, listing.owner_id)
        return await load_listing(self.store, listing_id)

    # --- bids ---

    def _accept_writes(self, listing: Listing, bid: Bid, competitors: List[Bid]) -> List[Write]:
        writes = [
            Write.update(BIDS, bid.id, {"status": BidStatus.ACCEPTED.value, "acceptedAt": SERVER_TIMESTAMP}),
            Write.update(LISTINGS, listing.id, {
                "status": ListingStatus.SOLD.value,
                "soldAt": SERVER_TIMESTAMP,
                "acceptedBidId": bid.id,
            }),
        ]
        writes.extend(_reject_writes(competitors, keep=bid.id))
        return writes

    async def accept_bid(self, actor_id: str, bid_id: str, listing_id: str) -> Bid:
        """Accept a bid, sell the listing and reject every competing bid.

        The three updates are committed as one batch. A commit that fails with
        ``UpstreamUnavailable`` is retried with backoff; before each retry the
        listing is re-read and an ``acceptedBidId`` equal to ``bid_id`` means an
        earlier attempt already landed. When retries run out nothing has been
        applied and ``AcceptBidIncomplete`` is raised.
        """
        delay = self.retry_delay
        attempt = 0
        while True:
            attempt += 1
            listing = await self._owned_listing(actor_id, listing_id, "accept bids on")
            if attempt > 1 and listing.accepted_bid_id == bid_id and listing.status is ListingStatus.SOLD:
                logger.info("Accept of bid %s landed on an earlier attempt", bid_id)
                break
            bid = await load_bid(self.store, bid_id)
            if bid.listing_id != listing_id:
                raise InvalidTransition("This bid does not belong to this listing")
            if bid.status is not BidStatus.ACTIVE:
                raise InvalidTransition(f"This bid has already been {bid.status.value}")
            next_status(listing.status, ListingAction.ACCEPT_BID)
            competitors = await fetch_active_bids(self.store, listing_id)
            try:
                await self.store.commit(self._accept_writes(listing, bid, competitors))
                break
            except UpstreamUnavailable as exc:
                if attempt >= self.max_attempts:
                    logger.critical(
                        "Accepting bid %s on listing %s failed after %d attempts: %s",
                        bid_id, listing_id, attempt, exc,
                    )
                    raise AcceptBidIncomplete(listing_id, bid_id, attempt) from exc
                logger.warning(
                    "Accepting bid %s failed (attempt %d/%d): %s; retrying in %.2fs",
                    bid_id, attempt, self.max_attempts, exc, delay,
                )
                await self._sleep(delay)
                delay *= 2
        invalidate_listing(self.cache, listing_id, actor_id)
        logger.info("Bid %s accepted; listing %s sold", bid_id, listing_id)
        return await load_bid(self.store, bid_id)

    async def reject_bid(self, actor_id: str, bid_id: str) -> Bid:
        bid = await load_bid(self.store, bid_id)
        listing = await self._owned_listing(actor_id, bid.listing_id, "reject bids on")
        if bid.status is not BidStatus.ACTIVE:
            return bid
        doc = await self.store.update(BIDS, bid_id, {"status": BidStatus.REJECTED.value, "rejectedAt": SERVER_TIMESTAMP})
        invalidate_listing(self.cache, listing.id, listing.owner_id)
        logger.info("Bid %s rejected on listing %s", bid_id, listing.id)
        return Bid.from_document(doc)

    # --- repair ---

    async def reconcile_listing(self, listing_id: str) -> bool:
        """Finish accept-bid cascades that older clients left half-applied."""
        listing = await load_listing(self.store, listing_id)
        docs = await self.store.query(Query(BIDS).where("listingId", "==", listing_id))
        bids = [Bid.from_document(d) for d in docs]
        accepted = sorted((b for b in bids if b.status is BidStatus.ACCEPTED), key=lambda b: (b.accepted_at or b.created_at or EPOCH, b.id))
        writes: List[Write] = []

        if listing.status is ListingStatus.ACTIVE and accepted:
            if len(accepted) > 1:
                logger.critical("Listing %s has %d accepted bids; needs manual review", listing_id, len(accepted))
                return False
            winner = accepted[0]
            writes.append(Write.update(LISTINGS, listing_id, {
                "status": ListingStatus.SOLD.value,
                "soldAt": SERVER_TIMESTAMP,
                "acceptedBidId": winner.id,
            }))
            writes.extend(_reject_writes(bids, keep=winner.id))
        elif listing.status in (ListingStatus.SOLD, ListingStatus.DELETED):
            writes.extend(_reject_writes(bids, keep=listing.accepted_bid_id))

        if not writes:
            return False
        await self.store.commit(writes)
        invalidate_listing(self.cache, listing_id, listing.owner_id)
        logger.warning("Reconciled listing %s (%d writes)", listing_id, len(writes))
        return True

    async def reconcile_all(self) -> int:
        candidates: Set[str] = set()
        for status in (BidStatus.ACCEPTED, BidStatus.ACTIVE):
            docs = await self.store.query(Query(BIDS).where("status", "==", status.value))
            candidates.update(str(d.get("listingId")) for d in docs if d.get("listingId"))
        repaired = 0
        for listing_id in sorted(candidates):
            try:
                if await self.reconcile_listing(listing_id):
                    repaired += 1
            except NotFound:
                logger.warning("Bids reference missing listing %s", listing_id)
            except Exception:
                logger.exception("Reconciling listing %s failed", listing_id)
        logger.info("Reconciliation sweep checked %d listings, repaired %d", len(candidates), repaired)
        return repaired
