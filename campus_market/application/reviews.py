import logging
from typing import List, Optional

from ..domain.documents import LISTINGS, Query, REVIEWS, SERVER_TIMESTAMP
from ..domain.errors import InvalidAmount, NotFound, PermissionDenied
from ..domain.models import Listing, Review, running_average
from ..domain.ports import DocumentStorePort
from ..infrastructure.cache import CacheService
from .cache_keys import invalidate_listing
from .service_catalog import ServiceCatalog
from .users import UserDirectory

logger = logging.getLogger(__name__)


def validate_rating(rating) -> int:
    if isinstance(rating, bool):
        raise InvalidAmount("Rating must be a whole number from 1 to 5")
    try:
        value = int(rating)
    except (TypeError, ValueError):
        raise InvalidAmount("Rating must be a whole number from 1 to 5") from None
    if value != rating or not 1 <= value <= 5:
        raise InvalidAmount("Rating must be a whole number from 1 to 5")
    return value


class ReviewService:
    def __init__(
        self,
        store: DocumentStorePort,
        cache: CacheService,
        users: UserDirectory,
        services: Optional[ServiceCatalog] = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.users = users
        self.services = services

    async def create_review(
        self,
        reviewer_id: str,
        seller_id: str,
        rating: int,
        comment: str = "",
        listing_id: Optional[str] = None,
        service_id: Optional[str] = None,
    ) -> Review:
        rating = validate_rating(rating)
        if reviewer_id == seller_id:
            raise PermissionDenied("You cannot review yourself")
        listing = await self._reviewed_listing(listing_id, seller_id) if listing_id else None
        doc = await self.store.add(REVIEWS, {
            "reviewerId": reviewer_id,
            "sellerId": seller_id,
            "listingId": listing_id,
            "serviceId": service_id,
            "rating": rating,
            "comment": (comment or "").strip(),
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        })
        if listing is not None:
            await self._rate_listing(listing, rating)
        if service_id and self.services is not None:
            await self.services.update_provider_rating(service_id, rating)
        await self.users.record_rating(seller_id, rating)
        logger.info("Review %s (%d stars) left for %s by %s", doc.id, rating, seller_id, reviewer_id)
        return Review.from_document(doc)

    async def _reviewed_listing(self, listing_id: str, seller_id: str) -> Listing:
        doc = await self.store.get(LISTINGS, listing_id)
        if doc is None:
            raise NotFound("Listing not found")
        listing = Listing.from_document(doc)
        if listing.owner_id != seller_id:
            raise PermissionDenied("This listing does not belong to the seller you are reviewing")
        return listing

    async def _rate_listing(self, listing: Listing, rating: int) -> None:
        new_rating, new_total = running_average(listing.seller_rating, listing.total_ratings, rating)
        await self.store.update(LISTINGS, listing.id, {"sellerRating": new_rating, "totalRatings": new_total})
        invalidate_listing(self.cache, listing.id, listing.owner_id)

    async def reviews_for_seller(self, seller_id: str) -> List[Review]:
        docs = await self.store.query(Query(REVIEWS).where("sellerId", "==", seller_id).order("createdAt", descending=True))
        return [Review.from_document(d) for d in docs]

    async def reviews_for_listing(self, listing_id: str) -> List[Review]:
        docs = await self.store.query(Query(REVIEWS).where("listingId", "==", listing_id).order("createdAt", descending=True))
        return [Review.from_document(d) for d in docs]

    async def update_review(self, reviewer_id: str, review_id: str, comment: Optional[str] = None) -> Review:
        doc = await self.store.get(REVIEWS, review_id)
        if doc is None:
            raise NotFound("Review not found")
        if Review.from_document(doc).reviewer_id != reviewer_id:
            raise PermissionDenied("Only the author can edit this review")
        changes = {"updatedAt": SERVER_TIMESTAMP}
        if comment is not None:
            changes["comment"] = comment.strip()
        return Review.from_document(await self.store.update(REVIEWS, review_id, changes))
