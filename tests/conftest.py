import pytest

from campus_market.adapters.store.memory_store import InMemoryDocumentStore
from campus_market.application.bids import BidLedger
from campus_market.application.catalog import ListingCatalog
from campus_market.application.listings import ListingLifecycle
from campus_market.application.messaging import BidNotifier, MessagingService
from campus_market.application.users import UserDirectory
from campus_market.domain.documents import LISTINGS, SERVER_TIMESTAMP, USERS
from campus_market.infrastructure.cache import CacheService

SELLER = "seller-1"
ALICE = "alice-1"
BOB = "bob-1"
CAROL = "carol-1"
ADMIN = "admin-1"


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def cache(clock):
    return CacheService(max_size=100, default_ttl=300, clock=clock)


@pytest.fixture
async def people(store):
    profiles = {
        SELLER: {"firstName": "Sam", "lastName": "Seller", "role": "student"},
        ALICE: {"firstName": "Alice", "lastName": "Adams", "role": "student"},
        BOB: {"firstName": "Bob", "lastName": "Brown", "role": "student"},
        CAROL: {"displayName": "carol", "role": "student"},
        ADMIN: {"firstName": "Ada", "lastName": "Admin", "role": "admin"},
    }
    for uid, data in profiles.items():
        await store.set(USERS, uid, dict(data, uid=uid, email=f"{uid}@iut-dhaka.edu"))
    return profiles


@pytest.fixture
def make_listing(store):
    async def make(owner_id=SELLER, pricing="bidding", status="active", price=None, **extra):
        data = {
            "userId": owner_id,
            "title": extra.pop("title", "Calculus textbook"),
            "description": extra.pop("description", "Barely used, no highlights"),
            "category": extra.pop("category", "Textbooks"),
            "condition": extra.pop("condition", "like-new"),
            "pricingType": pricing,
            "price": price,
            "visibility": "university",
            "status": status,
            "views": 0,
            "createdAt": SERVER_TIMESTAMP,
        }
        data.update(extra)
        doc = await store.add(LISTINGS, data)
        return doc.id

    return make


@pytest.fixture
async def listing_id(people, make_listing):
    return await make_listing()


@pytest.fixture
def users(store, cache):
    return UserDirectory(store, cache)


@pytest.fixture
def messaging(store):
    return MessagingService(store)


@pytest.fixture
def notifier(messaging):
    return BidNotifier(messaging)


@pytest.fixture
def ledger(store, cache, users, notifier):
    return BidLedger(store, cache, users, notifier)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def lifecycle(store, cache, users, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return ListingLifecycle(store, cache, users, max_attempts=3, retry_delay=0.5, sleep=fake_sleep)


@pytest.fixture
def catalog(store, cache, users):
    return ListingCatalog(store, cache, users, page_size=12, detail_ttl=120)
