from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from factories import JEDDAH, NOW, RIYADH, branch, bulk_amount, bulk_percent, item, per_item, product
from storefront.core.errors import NotFoundError
from storefront.services.branch_locator import BranchLocator
from storefront.services.domain import LocationContext
from storefront.services.geo import Location
from storefront.services.offer_resolution import OfferResolver
from storefront.stores.memory import InMemoryBranchIndex, InMemoryCampaignStore, InMemoryCatalog

RIYADH_BRANCH = branch(1, *RIYADH, city="Riyadh")
JEDDAH_BRANCH = branch(2, *JEDDAH, city="Jeddah")


class FakeGeo:
    def __init__(self, location=None):
        self.location = location
        self.calls = []

    async def resolve_from_ip(self, ip):
        self.calls.append(ip)
        return self.location


class FailingBranchIndex(InMemoryBranchIndex):
    async def get(self, branch_id):
        raise OperationalError("SELECT", {}, Exception("gone away"))


def _resolver(campaigns=(), products=None, geo=None, index=None):
    catalog = InMemoryCatalog(
        products
        if products is not None
        else [product(1, "20"), product(2, "50", category_id=3), product(3, "10", is_active=False)]
    )
    index = index or InMemoryBranchIndex([RIYADH_BRANCH, JEDDAH_BRANCH])
    return OfferResolver(InMemoryCampaignStore(campaigns), catalog, BranchLocator(index), geo)


@pytest.mark.anyio
async def test_explicit_branch_fills_city_and_coordinates():
    resolved = await _resolver().build_context(branch_id=2)

    assert resolved.source == "query"
    assert resolved.context == LocationContext(branch_id=2, city="Jeddah", coordinates=JEDDAH)


@pytest.mark.anyio
async def test_explicit_city_keeps_query_source():
    resolved = await _resolver().build_context(city="Dammam")

    assert resolved.source == "query"
    assert resolved.context.city == "Dammam"
    assert resolved.context.branch_id is None


@pytest.mark.anyio
async def test_coordinates_resolve_nearest_branch():
    lng, lat = RIYADH
    resolved = await _resolver().build_context(latitude=lat + 0.05, longitude=lng)

    assert resolved.source == "client"
    assert resolved.context.branch_id == 1
    assert resolved.context.city == "Riyadh"
    assert resolved.context.coordinates == (lng, lat + 0.05)


@pytest.mark.anyio
async def test_ip_lookup_used_only_without_explicit_location():
    geo = FakeGeo(Location(latitude=JEDDAH[1], longitude=JEDDAH[0], city="Jeddah"))
    resolver = _resolver(geo=geo)

    resolved = await resolver.build_context(client_ip="8.8.8.8", use_ip_lookup=True)
    assert resolved.source == "ip"
    assert resolved.context.branch_id == 2
    assert resolved.context.city == "Jeddah"

    await resolver.build_context(city="Riyadh", client_ip="8.8.8.8", use_ip_lookup=True)
    assert geo.calls == ["8.8.8.8"]


@pytest.mark.anyio
async def test_failed_ip_lookup_gives_empty_context():
    resolved = await _resolver(geo=FakeGeo(None)).build_context(
        client_ip="8.8.8.8", use_ip_lookup=True
    )

    assert resolved.source == "none"
    assert resolved.context.is_empty


@pytest.mark.anyio
async def test_branch_lookup_failure_degrades():
    resolver = _resolver(index=FailingBranchIndex([RIYADH_BRANCH]))
    resolved = await resolver.build_context(branch_id=1)

    assert resolved.branch is None
    assert resolved.context.branch_id == 1
    assert resolved.context.city is None


@pytest.mark.anyio
async def test_public_listing_hides_campaigns_without_purchasable_products():
    campaigns = [
        bulk_percent(1, "10", product_ids=frozenset({1})),
        bulk_percent(2, "10", product_ids=frozenset({3})),
        bulk_percent(3, "10", product_ids=frozenset({404})),
        bulk_percent(4, "10", category_ids=frozenset({3})),
        bulk_percent(5, "10"),
        bulk_percent(6, "10", product_ids=frozenset({1}), ends_at=NOW - timedelta(days=1)),
        per_item(7, item(3, offer_price="1"), item(1, offer_price="2")),
    ]
    listed = await _resolver(campaigns).public_active(NOW)

    assert [c.id for c in listed] == [7, 4, 1]


@pytest.mark.anyio
async def test_public_campaign_must_be_live():
    resolver = _resolver([bulk_percent(1, "10", is_active=False, product_ids=frozenset({1}))])

    with pytest.raises(NotFoundError):
        await resolver.public_campaign(1, NOW)
    with pytest.raises(NotFoundError):
        await resolver.public_campaign(99, NOW)


@pytest.mark.anyio
async def test_resolve_applies_stacking_and_reports_counts():
    campaigns = [
        bulk_amount(1, "2", product_ids=frozenset({1}), stackable=True),
        bulk_amount(2, "2", product_ids=frozenset({1}), stackable=True),
        bulk_percent(3, "10", product_ids=frozenset({1}), priority=1),
        bulk_percent(4, "30", product_ids=frozenset({1}), priority=2, branch_ids=frozenset({1})),
        bulk_percent(5, "30", product_ids=frozenset({2}), cities=frozenset({"Jeddah"})),
    ]
    resolver = _resolver(campaigns)
    resolved = await resolver.build_context(branch_id=1)

    result = await resolver.resolve_offers(resolved, NOW, [1, 2, 999])

    assert {c.id for c in result.offers} == {1, 2, 4}
    assert result.total_offers_found == 4
    assert result.cart_products_considered == 2


@pytest.mark.anyio
async def test_nearby_mixes_global_and_nearest_branch_offers():
    campaigns = [
        bulk_percent(1, "10", product_ids=frozenset({1})),
        bulk_percent(2, "10", product_ids=frozenset({1}), branch_id=1),
        bulk_percent(3, "10", product_ids=frozenset({1}), branch_id=2),
    ]
    offers, nearest = await _resolver(campaigns).nearby(NOW, RIYADH[1], RIYADH[0])

    assert nearest.id == 1
    assert [c.id for c in offers] == [2, 1]


@pytest.mark.anyio
async def test_price_product_ids_skips_unknown_and_uses_context():
    campaigns = [
        per_item(1, item(1, offer_price="5"), branch_ids=frozenset({2}), priority=5),
        bulk_percent(2, "10", product_ids=frozenset({1})),
    ]
    resolver = _resolver(campaigns)

    pairs = await resolver.price_product_ids([1, 77], LocationContext(branch_id=2), NOW)
    assert [p.id for p, _ in pairs] == [1]
    assert pairs[0][1].effective_price == Decimal("5.00")

    pairs = await resolver.price_product_ids([1], LocationContext(), NOW)
    assert pairs[0][1].effective_price == Decimal("18.00")
