import pytest

from campus_market.application.catalog import ListingFilters, parse_range
from campus_market.domain.documents import LISTINGS
from campus_market.domain.errors import InvalidAmount, NotFound

from conftest import SELLER


@pytest.mark.asyncio
async def test_browse_pages_newest_first(catalog, make_listing, people):
    ids = [await make_listing(title=f"Item {i}") for i in range(14)]
    await make_listing(status="sold")

    first = await catalog.browse()
    assert len(first.items) == 12
    assert first.has_more
    assert first.total_count == 14
    assert first.items[0].id == ids[-1]

    second = await catalog.browse(cursor=first.cursor)
    assert [l.id for l in second.items] == [ids[1], ids[0]]
    assert not second.has_more


@pytest.mark.asyncio
async def test_filters(catalog, make_listing, people):
    lamp = await make_listing(pricing="fixed", price=15, category="Furniture", title="Lamp")
    await make_listing(pricing="fixed", price=45, category="Furniture", title="Desk")
    phone = await make_listing(pricing="fixed", price=18, category="Electronics", condition="good")
    await make_listing(pricing="bidding", category="Furniture")

    furniture = await catalog.browse(ListingFilters(category="Furniture"))
    assert len(furniture.items) == 3

    cheap = await catalog.browse(ListingFilters(price_range="10-20"))
    assert {l.id for l in cheap.items} == {lamp, phone}

    cheap_furniture = await catalog.browse(ListingFilters(category="Furniture", price_range="-20"))
    assert [l.id for l in cheap_furniture.items] == [lamp]

    good = await catalog.browse(ListingFilters(condition="good"))
    assert [l.id for l in good.items] == [phone]

    bidding = await catalog.browse(ListingFilters(pricing_mode="bidding"))
    assert len(bidding.items) == 1


@pytest.mark.parametrize("raw, expected", [
    (None, (None, None)),
    ("10-20", (10.0, 20.0)),
    ("5-", (5.0, None)),
    ("-7.5", (None, 7.5)),
])
def test_parse_range(raw, expected):
    assert parse_range(raw) == expected


@pytest.mark.parametrize("raw", ["cheap-20", "30-10"])
def test_parse_range_rejects_bad_input(raw):
    with pytest.raises(InvalidAmount):
        parse_range(raw)


@pytest.mark.asyncio
async def test_writes_invalidate_cached_pages(catalog, lifecycle, listing_id, make_listing):
    await make_listing()
    assert (await catalog.browse()).total_count == 2

    await lifecycle.mark_sold(SELLER, listing_id)
    page = await catalog.browse()
    assert page.total_count == 1
    assert listing_id not in [l.id for l in page.items]


@pytest.mark.asyncio
async def test_listing_detail_is_cached_briefly(catalog, store, clock, listing_id):
    assert (await catalog.get_listing(listing_id)).title == "Calculus textbook"

    await store.update(LISTINGS, listing_id, {"title": "Changed behind the cache"})
    assert (await catalog.get_listing(listing_id)).title == "Calculus textbook"

    clock.advance(121)
    assert (await catalog.get_listing(listing_id)).title == "Changed behind the cache"


@pytest.mark.asyncio
async def test_seller_names_are_filled_in(catalog, make_listing, people):
    mine = await make_listing()
    orphan = await make_listing(owner_id="ghost-user")
    assert (await catalog.get_listing(mine)).seller_name == "Sam Seller"
    assert (await catalog.get_listing(orphan)).seller_name == "Anonymous"


@pytest.mark.asyncio
async def test_get_missing_listing(catalog):
    with pytest.raises(NotFound):
        await catalog.get_listing("nope")


@pytest.mark.asyncio
async def test_search(catalog, make_listing, people):
    await make_listing(title="Calculus II", description="")
    await make_listing(title="Bike", description="Fast road bike")

    assert len((await catalog.search("calculus")).items) == 1
    assert len((await catalog.search("ROAD")).items) == 1
    assert len((await catalog.search("")).items) == 2


@pytest.mark.asyncio
async def test_view_count(catalog, listing_id):
    await catalog.get_listing(listing_id)
    await catalog.increment_view_count(listing_id)
    await catalog.increment_view_count(listing_id)
    assert (await catalog.get_listing(listing_id)).views == 2
