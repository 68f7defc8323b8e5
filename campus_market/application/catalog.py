import dataclasses
import logging
from dataclasses import dataclass
from typing import Generic, List, Optional, Tuple, TypeVar

from ..domain.documents import Document, Increment, LISTINGS, Query
from ..domain.errors import InvalidAmount, NotFound
from ..domain.models import Listing, ListingStatus
from ..domain.ports import DocumentStorePort
from ..infrastructure.cache import CacheService, DETAIL_TTL_SECONDS
from .cache_keys import listing_key, listing_page_key
from .users import UserDirectory

logger = logging.getLogger(__name__)

T = TypeVar("T")

LISTINGS_PER_PAGE = 12


@dataclass(frozen=True)
class Page(Generic[T]):
    items: List[T]
    cursor: Optional[Document]
    has_more: bool
    total_count: int


@dataclass(frozen=True)
class ListingFilters:
    category: Optional[str] = None
    condition: Optional[str] = None
    university: Optional[str] = None
    owner_id: Optional[str] = None
    pricing_mode: Optional[str] = None
    visibility: Optional[str] = None
    price_range: Optional[str] = None  # "min-max", either side may be empty

    def fingerprint(self) -> str:
        return "|".join(f"{k}={v}" for k, v in sorted(dataclasses.asdict(self).items()) if v)


def parse_range(raw: Optional[str]) -> Tuple[Optional[float], Optional[float]]:
    if not raw:
        return None, None
    low, _, high = raw.partition("-")
    try:
        low_value = float(low) if low.strip() else None
        high_value = float(high) if high.strip() else None
    except ValueError:
        raise InvalidAmount(f"Invalid price range {raw!r}") from None
    if low_value is not None and high_value is not None and low_value > high_value:
        raise InvalidAmount("The minimum price must not exceed the maximum")
    return low_value, high_value


def apply_range(q: Query, field_name: str, raw: Optional[str]) -> Query:
    low, high = parse_range(raw)
    # A zero bound does not narrow anything.
    if low:
        q = q.where(field_name, ">=", low)
    if high:
        q = q.where(field_name, "<=", high)
    return q


class ListingCatalog:
    def __init__(
        self,
        store: DocumentStorePort,
        cache: CacheService,
        users: UserDirectory,
        page_size: int = LISTINGS_PER_PAGE,
        detail_ttl: float = DETAIL_TTL_SECONDS,
    ) -> None:
        self.store = store
        self.cache = cache
        self.users = users
        self.page_size = page_size
        self.detail_ttl = detail_ttl

    async def _with_seller_names(self, listings: List[Listing]) -> List[Listing]:
        unnamed = [l.owner_id for l in listings if not l.seller_name]
        if not unnamed:
            return listings
        profiles = await self.users.get_users_batch(unnamed)
        out = []
        for l in listings:
            if not l.seller_name:
                profile = profiles.get(l.owner_id)
                l = dataclasses.replace(l, seller_name=profile.full_name if profile else "Anonymous")
            out.append(l)
        return out

    async def _load_listing(self, listing_id: str) -> Listing:
        doc = await self.store.get(LISTINGS, listing_id)
        if doc is None:
            raise NotFound("Listing not found")
        return (await self._with_seller_names([Listing.from_document(doc)]))[0]

    async def get_listing(self, listing_id: str) -> Listing:
        return await self.cache.get_or_load(listing_key(listing_id), lambda: self._load_listing(listing_id), self.detail_ttl)

    def _query(self, filters: ListingFilters) -> Query:
        q = Query(LISTINGS)
        if filters.category:
            q = q.where("category", "==", filters.category)
        if filters.condition:
            q = q.where("condition", "==", filters.condition)
        if filters.university:
            q = q.where("university", "==", filters.university)
        if filters.owner_id:
            q = q.where("userId", "==", filters.owner_id)
        if filters.pricing_mode:
            q = q.where("pricingType", "==", filters.pricing_mode)
        if filters.visibility:
            q = q.where("visibility", "==", filters.visibility)
        q = apply_range(q, "price", filters.price_range)
        return q.where("status", "==", ListingStatus.ACTIVE.value).order("createdAt", descending=True)

    async def browse(self, filters: Optional[ListingFilters] = None, cursor: Optional[Document] = None) -> Page[Listing]:
        filters = filters or ListingFilters()
        key = listing_page_key(f"{filters.fingerprint()}@{cursor.id if cursor else ''}")

        async def load() -> Page[Listing]:
            docs = await self.store.query(self._query(filters).after(cursor).take(self.page_size))
            listings = await self._with_seller_names([Listing.from_document(d) for d in docs])
            total = await self.store.count(Query(LISTINGS).where("status", "==", ListingStatus.ACTIVE.value))
            logger.debug("Loaded %d listings for %s", len(listings), key)
            return Page(
                items=listings,
                cursor=docs[-1] if docs else None,
                has_more=len(docs) == self.page_size,
                total_count=total,
            )

        page = await self.cache.get_or_load(key, load)
        return dataclasses.replace(page, items=list(page.items))

    async def search(self, text: str, cursor: Optional[Document] = None) -> Page[Listing]:
        page = await self.browse(ListingFilters(), cursor)
        needle = (text or "").strip().lower()
        if not needle:
            return page
        matches = [l for l in page.items if needle in l.title.lower() or needle in l.description.lower()]
        return Page(items=matches, cursor=page.cursor, has_more=page.has_more, total_count=page.total_count)

    async def increment_view_count(self, listing_id: str) -> None:
        await self.store.update(LISTINGS, listing_id, {"views": Increment(1)})
        self.cache.delete(listing_key(listing_id))
