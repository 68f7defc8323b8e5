from ..infrastructure.cache import CacheService

LISTING_PAGES_PATTERN = r"^listings:page:"
SERVICE_PAGES_PATTERN = r"^services:page:"


def listing_key(listing_id: str) -> str:
    return f"listing:{listing_id}"


def listing_page_key(fingerprint: str) -> str:
    return f"listings:page:{fingerprint}"


def service_key(service_id: str) -> str:
    return f"service:{service_id}"


def service_page_key(fingerprint: str) -> str:
    return f"services:page:{fingerprint}"


def bids_key(listing_id: str) -> str:
    return f"bids:{listing_id}"


def seller_bids_key(seller_id: str) -> str:
    return f"seller_bids:{seller_id}"


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def invalidate_listing(cache: CacheService, listing_id: str, owner_id: str = "") -> None:
    cache.delete(listing_key(listing_id))
    cache.delete(bids_key(listing_id))
    if owner_id:
        cache.delete(seller_bids_key(owner_id))
    cache.invalidate_pattern(LISTING_PAGES_PATTERN)


def invalidate_service(cache: CacheService, service_id: str) -> None:
    cache.delete(service_key(service_id))
    cache.invalidate_pattern(SERVICE_PAGES_PATTERN)


def invalidate_user(cache: CacheService, *ids: str) -> None:
    for user_id in ids:
        if user_id:
            cache.delete(user_key(user_id))
