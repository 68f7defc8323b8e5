import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..domain.documents import Document, Increment, Query, SERVER_TIMESTAMP, SERVICES
from ..domain.errors import InvalidDocument, InvalidTransition, NotFound, PermissionDenied
from ..domain.models import Category, Service, ServiceStatus, parse_amount, running_average
from ..domain.ports import DocumentStorePort
from ..infrastructure.cache import CacheService, DETAIL_TTL_SECONDS
from .cache_keys import invalidate_service, service_key, service_page_key
from .catalog import LISTINGS_PER_PAGE, Page, apply_range
from .users import UserDirectory

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {
    "title": "title",
    "description": "description",
    "category": "category",
    "hourly_rate": "hourlyRate",
    "skill_level": "skillLevel",
    "availability": "availability",
}


@dataclass(frozen=True)
class ServiceFilters:
    category: Optional[str] = None
    skill_level: Optional[str] = None
    university: Optional[str] = None
    owner_id: Optional[str] = None
    availability: Optional[str] = None
    hourly_rate: Optional[str] = None  # "min-max"

    def fingerprint(self) -> str:
        return "|".join(f"{k}={v}" for k, v in sorted(dataclasses.asdict(self).items()) if v)


class ServiceCatalog:
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

    async def create_service(
        self,
        provider_id: str,
        title: str,
        description: str,
        category: str = Category.OTHER.value,
        hourly_rate: Optional[float] = None,
        skill_level: Optional[str] = None,
        availability: Optional[str] = None,
        university: Optional[str] = None,
    ) -> Service:
        title = (title or "").strip()
        if not title:
            raise InvalidDocument("Title is required")
        provider_name = await self.users.display_name(provider_id)
        doc = await self.store.add(SERVICES, {
            "userId": provider_id,
            "title": title,
            "description": (description or "").strip(),
            "category": category,
            "hourlyRate": parse_amount(hourly_rate, "Hourly rate") if hourly_rate is not None else None,
            "skillLevel": skill_level,
            "availability": availability,
            "university": university,
            "providerName": provider_name,
            "status": ServiceStatus.ACTIVE.value,
            "views": 0,
            "providerRating": 0,
            "totalRatings": 0,
            "createdAt": SERVER_TIMESTAMP,
        })
        invalidate_service(self.cache, doc.id)
        logger.info("Service %s offered by %s", doc.id, provider_id)
        return Service.from_document(doc)

    async def _load(self, service_id: str) -> Service:
        doc = await self.store.get(SERVICES, service_id)
        if doc is None:
            raise NotFound("Service not found")
        return Service.from_document(doc)

    async def get_service(self, service_id: str) -> Service:
        return await self.cache.get_or_load(service_key(service_id), lambda: self._load(service_id), self.detail_ttl)

    async def browse(self, filters: Optional[ServiceFilters] = None, cursor: Optional[Document] = None) -> Page[Service]:
        filters = filters or ServiceFilters()
        key = service_page_key(f"{filters.fingerprint()}@{cursor.id if cursor else ''}")
        q = Query(SERVICES)
        for attr, field_name in (
            ("category", "category"),
            ("skill_level", "skillLevel"),
            ("university", "university"),
            ("owner_id", "userId"),
            ("availability", "availability"),
        ):
            value = getattr(filters, attr)
            if value:
                q = q.where(field_name, "==", value)
        q = apply_range(q, "hourlyRate", filters.hourly_rate)
        q = q.where("status", "==", ServiceStatus.ACTIVE.value).order("createdAt", descending=True)

        async def load() -> Page[Service]:
            docs = await self.store.query(q.after(cursor).take(self.page_size))
            total = await self.store.count(Query(SERVICES).where("status", "==", ServiceStatus.ACTIVE.value))
            return Page(
                items=[Service.from_document(d) for d in docs],
                cursor=docs[-1] if docs else None,
                has_more=len(docs) == self.page_size,
                total_count=total,
            )

        page = await self.cache.get_or_load(key, load)
        return dataclasses.replace(page, items=list(page.items))

    async def _owned(self, actor_id: str, service_id: str) -> Service:
        service = await self._load(service_id)
        if service.provider_id != actor_id:
            raise PermissionDenied("Only the provider can change this service")
        if service.status is not ServiceStatus.ACTIVE:
            raise InvalidTransition("This service has been removed")
        return service

    async def update_service(self, actor_id: str, service_id: str, changes: Dict[str, Any]) -> Service:
        await self._owned(actor_id, service_id)
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise InvalidDocument(f"Cannot edit field(s): {', '.join(sorted(unknown))}")
        update = {EDITABLE_FIELDS[k]: v for k, v in changes.items()}
        if update.get("hourlyRate") is not None:
            update["hourlyRate"] = parse_amount(update["hourlyRate"], "Hourly rate")
        if "title" in update and not str(update["title"] or "").strip():
            raise InvalidDocument("Title is required")
        update["updatedAt"] = SERVER_TIMESTAMP
        doc = await self.store.update(SERVICES, service_id, update)
        invalidate_service(self.cache, service_id)
        return Service.from_document(doc)

    async def delete_service(self, actor_id: str, service_id: str) -> None:
        await self._owned(actor_id, service_id)
        await self.store.update(SERVICES, service_id, {"status": ServiceStatus.DELETED.value, "deletedAt": SERVER_TIMESTAMP})
        invalidate_service(self.cache, service_id)
        logger.info("Service %s removed by %s", service_id, actor_id)

    async def increment_view_count(self, service_id: str) -> None:
        await self.store.update(SERVICES, service_id, {"views": Increment(1)})
        self.cache.delete(service_key(service_id))

    async def update_provider_rating(self, service_id: str, rating: float) -> Service:
        service = await self._load(service_id)
        new_rating, new_total = running_average(service.provider_rating, service.total_ratings, rating)
        doc = await self.store.update(SERVICES, service_id, {"providerRating": new_rating, "totalRatings": new_total})
        invalidate_service(self.cache, service_id)
        return Service.from_document(doc)
