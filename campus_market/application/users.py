import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from ..domain.documents import Query, USERS
from ..domain.errors import NotFound, PermissionDenied
from ..domain.models import ANONYMOUS, Role, UserProfile, parse_enum, running_average
from ..domain.ports import DocumentStorePort
from ..infrastructure.cache import CacheService
from .cache_keys import invalidate_user, user_key

logger = logging.getLogger(__name__)


class UserDirectory:
    def __init__(self, store: DocumentStorePort, cache: CacheService) -> None:
        self.store = store
        self.cache = cache

    async def _load(self, user_id: str) -> UserProfile:
        doc = await self.store.get(USERS, user_id)
        if doc is None:
            # Older profiles are keyed by email and carry the auth uid as a field.
            matches = await self.store.query(Query(USERS).where("uid", "==", user_id).take(1))
            doc = matches[0] if matches else None
        if doc is None:
            raise NotFound("User not found")
        return UserProfile.from_document(doc)

    async def get_user(self, user_id: str) -> UserProfile:
        return await self.cache.get_or_load(user_key(user_id), lambda: self._load(user_id))

    async def _find(self, user_id: str) -> Optional[UserProfile]:
        try:
            return await self.get_user(user_id)
        except NotFound:
            return None

    async def get_users_batch(self, user_ids: Iterable[str]) -> Dict[str, UserProfile]:
        """Resolve many users with one store read per distinct uncached id.

        Ids that do not resolve are left out of the result.
        """
        unique = list(dict.fromkeys(uid for uid in user_ids if uid))
        profiles = await asyncio.gather(*(self._find(uid) for uid in unique))
        return {uid: profile for uid, profile in zip(unique, profiles) if profile is not None}

    async def display_name(self, user_id: str) -> str:
        try:
            return (await self.get_user(user_id)).full_name
        except NotFound:
            logger.warning("No profile for user %s; using %s", user_id, ANONYMOUS)
            return ANONYMOUS

    async def require_admin(self, user_id: str) -> UserProfile:
        try:
            profile = await self.get_user(user_id)
        except NotFound:
            raise PermissionDenied("Administrator access required") from None
        if not profile.is_admin:
            raise PermissionDenied("Administrator access required")
        return profile

    async def list_students(self) -> List[UserProfile]:
        docs = await self.store.query(Query(USERS).where("role", "==", Role.STUDENT.value))
        return [UserProfile.from_document(d) for d in docs]

    async def _update(self, user_id: str, changes: dict) -> UserProfile:
        profile = await self.get_user(user_id)
        doc = await self.store.update(USERS, profile.id, changes)
        invalidate_user(self.cache, user_id, profile.id, profile.uid or "")
        return UserProfile.from_document(doc)

    async def set_suspended(self, admin_id: str, user_id: str, suspended: bool) -> UserProfile:
        admin = await self.require_admin(admin_id)
        if user_id in (admin.id, admin.uid):
            raise PermissionDenied("You cannot suspend your own account")
        logger.info("Admin %s set suspended=%s on user %s", admin_id, suspended, user_id)
        return await self._update(user_id, {"suspended": bool(suspended)})

    async def set_role(self, admin_id: str, user_id: str, role: str) -> UserProfile:
        admin = await self.require_admin(admin_id)
        if user_id in (admin.id, admin.uid):
            raise PermissionDenied("You cannot change your own role")
        new_role = parse_enum(Role, role, "role")
        logger.info("Admin %s set role=%s on user %s", admin_id, new_role.value, user_id)
        return await self._update(user_id, {"role": new_role.value})

    async def record_rating(self, user_id: str, rating: float) -> Optional[UserProfile]:
        try:
            profile = await self.get_user(user_id)
        except NotFound:
            return None
        # Read fresh; the cached profile may lag behind other raters.
        doc = await self.store.get(USERS, profile.id)
        current = UserProfile.from_document(doc) if doc is not None else profile
        new_rating, new_total = running_average(current.rating, current.total_ratings, rating)
        return await self._update(user_id, {"rating": new_rating, "totalRatings": new_total})
