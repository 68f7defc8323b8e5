import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from campus_market.adapters.ai.openai_chat import OpenAIChatCompletion
from campus_market.adapters.auth.rest_auth import RestAuthClient
from campus_market.adapters.store.json_store import JsonDocumentStore
from campus_market.adapters.store.memory_store import InMemoryDocumentStore
from campus_market.application.accounts import AccountService
from campus_market.application.assistant import PriceEstimator, ShoppingAssistant
from campus_market.application.bids import BidLedger
from campus_market.application.catalog import ListingCatalog
from campus_market.application.listings import ListingLifecycle
from campus_market.application.messaging import BidNotifier, MessagingService
from campus_market.application.reviews import ReviewService
from campus_market.application.service_catalog import ServiceCatalog
from campus_market.application.users import UserDirectory
from campus_market.domain.ports import DocumentStorePort
from campus_market.infrastructure.cache import CacheService, snapshot
from campus_market.infrastructure.config import Settings, settings
from campus_market.infrastructure.logging_setup import configure_logging

logger = logging.getLogger("campus_market.main")


@dataclass
class App:
    settings: Settings
    cache: CacheService
    store: DocumentStorePort
    users: UserDirectory
    messaging: MessagingService
    notifier: BidNotifier
    bids: BidLedger
    listings: ListingLifecycle
    catalog: ListingCatalog
    services: ServiceCatalog
    reviews: ReviewService
    accounts: Optional[AccountService] = None
    assistant: Optional[ShoppingAssistant] = None
    estimator: Optional[PriceEstimator] = None


def build_app(config: Settings = settings, store: Optional[DocumentStorePort] = None) -> App:
    cache = CacheService(max_size=config.cache_max_size, default_ttl=config.cache_default_ttl_seconds)
    if store is None:
        store = JsonDocumentStore(config.store_path) if config.store_path else InMemoryDocumentStore()
    users = UserDirectory(store, cache)
    messaging = MessagingService(store)
    notifier = BidNotifier(messaging)
    services = ServiceCatalog(
        store, cache, users, page_size=config.listings_per_page, detail_ttl=config.cache_detail_ttl_seconds
    )
    app = App(
        settings=config,
        cache=cache,
        store=store,
        users=users,
        messaging=messaging,
        notifier=notifier,
        bids=BidLedger(store, cache, users, notifier),
        listings=ListingLifecycle(
            store,
            cache,
            users,
            max_attempts=config.accept_bid_max_attempts,
            retry_delay=config.accept_bid_retry_delay_seconds,
        ),
        catalog=ListingCatalog(
            store, cache, users, page_size=config.listings_per_page, detail_ttl=config.cache_detail_ttl_seconds
        ),
        services=services,
        reviews=ReviewService(store, cache, users, services),
    )

    if config.groq_api_key:
        chat = OpenAIChatCompletion(config)
        app.assistant = ShoppingAssistant(chat)
        app.estimator = PriceEstimator(chat)
        logger.info("Assistant enabled with model %s", config.groq_model)
    else:
        logger.warning("GROQ_API_KEY not set; assistant and price estimates are disabled")

    if config.auth_api_key:
        app.accounts = AccountService(RestAuthClient(config), store, users, config.university_domains)
    else:
        logger.warning("AUTH_API_KEY not set; sign-up and sign-in are disabled")
    return app


async def maintenance(app: App) -> None:
    purged = app.cache.purge_expired()
    logger.info("Cache: purged %d expired entries, stats %s", purged, snapshot(app.cache.stats()))
    repaired = await app.listings.reconcile_all()
    if repaired:
        logger.warning("Reconciled %d listing(s) with inconsistent bid state", repaired)


async def main():
    configure_logging(settings.log_level)
    logger.info("Starting with %s", settings.masked_summary())
    app = build_app(settings)
    if settings.reconcile_on_start:
        await maintenance(app)

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        maintenance, "interval", args=[app], minutes=settings.maintenance_interval_minutes, id="maintenance"
    )
    scheduler.start()

    while True:
        await asyncio.sleep(3600)


if __name__ == "__main__":
    asyncio.run(main())
