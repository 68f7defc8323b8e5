import pytest

from campus_market.application.service_catalog import ServiceCatalog, ServiceFilters
from campus_market.domain.documents import SERVICES
from campus_market.domain.errors import InvalidAmount, InvalidDocument, InvalidTransition, PermissionDenied
from campus_market.domain.models import ServiceStatus

from conftest import ALICE, SELLER


@pytest.fixture
def services(store, cache, users):
    return ServiceCatalog(store, cache, users, page_size=12, detail_ttl=120)


@pytest.fixture
async def tutoring(services, people):
    return await services.create_service(
        SELLER,
        "Calculus tutoring",
        "Exam prep sessions",
        category="Textbooks",
        hourly_rate=15,
        skill_level="advanced",
        availability="weekends",
    )


@pytest.mark.asyncio
async def test_create_service(tutoring):
    assert tutoring.provider_name == "Sam Seller"
    assert tutoring.status is ServiceStatus.ACTIVE
    assert tutoring.hourly_rate == 15.0


@pytest.mark.asyncio
async def test_create_validation(services, people):
    with pytest.raises(InvalidDocument):
        await services.create_service(SELLER, "  ", "no title")
    with pytest.raises(InvalidAmount):
        await services.create_service(SELLER, "Free stuff", "", hourly_rate=0)


@pytest.mark.asyncio
async def test_browse_filters(services, tutoring):
    await services.create_service(ALICE, "Bike repair", "Quick fixes", hourly_rate=40, skill_level="beginner")
    await services.create_service(ALICE, "Proofreading", "Essays", skill_level="advanced")

    everything = await services.browse()
    assert everything.total_count == 3
    assert everything.items[0].title == "Proofreading"

    affordable = await services.browse(ServiceFilters(hourly_rate="10-20"))
    assert [s.id for s in affordable.items] == [tutoring.id]

    advanced = await services.browse(ServiceFilters(skill_level="advanced"))
    assert len(advanced.items) == 2

    mine = await services.browse(ServiceFilters(owner_id=SELLER))
    assert [s.id for s in mine.items] == [tutoring.id]


@pytest.mark.asyncio
async def test_update_and_detail_cache(services, store, tutoring):
    await services.get_service(tutoring.id)
    await store.update(SERVICES, tutoring.id, {"title": "Sneaky edit"})
    assert (await services.get_service(tutoring.id)).title == "Calculus tutoring"

    with pytest.raises(PermissionDenied):
        await services.update_service(ALICE, tutoring.id, {"title": "Stolen"})
    with pytest.raises(InvalidDocument):
        await services.update_service(SELLER, tutoring.id, {"status": "deleted"})

    await services.update_service(SELLER, tutoring.id, {"hourly_rate": "20", "title": "Calculus I & II"})
    fresh = await services.get_service(tutoring.id)
    assert fresh.title == "Calculus I & II"
    assert fresh.hourly_rate == 20.0


@pytest.mark.asyncio
async def test_delete_is_soft(services, tutoring):
    with pytest.raises(PermissionDenied):
        await services.delete_service(ALICE, tutoring.id)

    await services.delete_service(SELLER, tutoring.id)
    removed = await services.get_service(tutoring.id)
    assert removed.status is ServiceStatus.DELETED
    assert removed.deleted_at is not None
    assert (await services.browse()).items == []

    with pytest.raises(InvalidTransition):
        await services.delete_service(SELLER, tutoring.id)


@pytest.mark.asyncio
async def test_views_and_rating(services, tutoring):
    await services.increment_view_count(tutoring.id)
    await services.update_provider_rating(tutoring.id, 4)
    updated = await services.update_provider_rating(tutoring.id, 5)
    assert updated.views == 1
    assert updated.provider_rating == 4.5
    assert updated.total_ratings == 2
