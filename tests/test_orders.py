from decimal import Decimal

import pytest

from factories import ADMIN, CUSTOMER, JEDDAH, NOW, OPERATOR_1, RIYADH, branch, bulk_percent, item, per_item, product
from storefront.core.errors import (
    NotFoundError,
    OrderIntegrityError,
    OrderValidationError,
    PermissionDeniedError,
)
from storefront.schemas.order import OrderCreate
from storefront.services.branch_locator import BranchLocator
from storefront.services.domain import Actor
from storefront.services.geo import Location
from storefront.services.offer_resolution import OfferResolver
from storefront.services.orders import OrderAssembler
from storefront.stores.memory import (
    InMemoryBranchIndex,
    InMemoryCampaignStore,
    InMemoryCatalog,
    InMemoryOrderStore,
)

ADDRESS = {
    "first_name": "Sara",
    "last_name": "Haddad",
    "phone": "+966500000000",
    "address": "King Fahd Road",
    "building_number": "1234",
    "district": "Olaya",
    "email": "sara@example.com",
    "city": "Riyadh",
}


class FakeGeo:
    def __init__(self, location=None):
        self.location = location
        self.calls = []

    async def resolve_from_ip(self, ip):
        self.calls.append(ip)
        return self.location


class FailingAddressStore(InMemoryOrderStore):
    async def save_address(self, customer_code, label, address):
        raise RuntimeError("address book unavailable")


def _assembler(campaigns=(), orders=None, geo=None, branches=None):
    orders = orders or InMemoryOrderStore()
    catalog = InMemoryCatalog(
        [product(1, "20", title="Kettle"), product(2, "7.50"), product(3, "5", is_active=False)]
    )
    index = InMemoryBranchIndex(
        branches if branches is not None else [branch(1, *RIYADH, city="Riyadh"), branch(2, *JEDDAH, city="Jeddah")]
    )
    return (
        OrderAssembler(orders, catalog, InMemoryCampaignStore(campaigns), BranchLocator(index), geo),
        orders,
    )


def _payload(items, subtotal, total=None, **extra):
    data = {
        "items": [{"product_id": pid, "quantity": qty} for pid, qty in items],
        "shipping_address": ADDRESS,
        "payment_method": "cod",
        "subtotal": subtotal,
        "shipping": extra.pop("shipping", "0"),
        "total": total if total is not None else subtotal,
    }
    data.update(extra)
    return OrderCreate(**data)


@pytest.mark.anyio
async def test_order_is_repriced_and_numbered():
    assembler, orders = _assembler([bulk_percent(1, "10", product_ids=frozenset({1}))])

    placed = await assembler.create_order(CUSTOMER, _payload([(1, 2), (2, 1)], "43.50"), NOW)

    assert placed.order_number == "MTC000001"
    assert placed.subtotal == Decimal("43.50")
    assert placed.total == Decimal("43.50")
    kettle, other = placed.lines
    assert (kettle.price, kettle.offer_price, kettle.subtotal) == (
        Decimal("20.00"),
        Decimal("18.00"),
        Decimal("36.00"),
    )
    assert other.offer_price is None
    assert placed.status == "pending"
    assert placed.branch_id is None
    assert placed.location_source == "none"

    second = await assembler.create_order(CUSTOMER, _payload([(2, 2)], "15.00"), NOW)
    assert second.order_number == "MTC000002"


@pytest.mark.anyio
async def test_duplicate_lines_are_merged():
    assembler, _ = _assembler()

    placed = await assembler.create_order(CUSTOMER, _payload([(2, 1), (2, 3)], "30.00"), NOW)
    [line] = placed.lines
    assert line.quantity == 4


@pytest.mark.anyio
@pytest.mark.parametrize(
    "subtotal, total",
    [("39.98", "39.98"), ("40.02", "40.02"), ("40.00", "45.00")],
    ids=["subtotal-low", "subtotal-high", "total-mismatch"],
)
async def test_totals_outside_tolerance_persist_nothing(subtotal, total):
    assembler, orders = _assembler()

    with pytest.raises(OrderIntegrityError) as excinfo:
        await assembler.create_order(
            CUSTOMER, _payload([(1, 2)], subtotal, total, save_info=True), NOW
        )

    assert "mismatch" in excinfo.value.reason
    assert orders.orders == {}
    assert orders.addresses == []
    assert await orders.next_order_number() == "MTC000001"


@pytest.mark.anyio
async def test_totals_within_one_cent_are_accepted_and_stored_recomputed():
    assembler, _ = _assembler()

    placed = await assembler.create_order(
        CUSTOMER, _payload([(1, 2)], "40.01", "45.01", shipping="5"), NOW
    )
    assert placed.subtotal == Decimal("40.00")
    assert placed.total == Decimal("45.00")


@pytest.mark.anyio
async def test_address_failure_rolls_back_order():
    assembler, orders = _assembler(orders=FailingAddressStore())

    with pytest.raises(RuntimeError):
        await assembler.create_order(CUSTOMER, _payload([(1, 1)], "20", save_info=True), NOW)

    assert orders.orders == {}
    assert await orders.next_order_number() == "MTC000001"


@pytest.mark.anyio
async def test_saved_address_label_follows_customer_kind():
    assembler, orders = _assembler()

    await assembler.create_order(CUSTOMER, _payload([(1, 1)], "20", save_info=True), NOW)

    [saved] = orders.addresses
    assert saved["label"] == "Home Address"
    assert saved["customer_code"] == "CUST1"
    assert saved["address"]["email"] == "sara@example.com"


@pytest.mark.anyio
async def test_device_location_assigns_nearest_branch_and_prices_locally():
    branch_deal = per_item(1, item(1, offer_price="10"), branch_ids=frozenset({2}))
    assembler, _ = _assembler([branch_deal])
    location = {"latitude": JEDDAH[1] + 0.01, "longitude": JEDDAH[0]}

    placed = await assembler.create_order(
        CUSTOMER, _payload([(1, 1)], "10", client_location=location), NOW
    )

    assert placed.branch_id == 2
    assert placed.location_source == "client"
    assert placed.subtotal == Decimal("10.00")


@pytest.mark.anyio
async def test_ip_location_assigns_branch_but_does_not_change_prices():
    branch_deal = per_item(1, item(1, offer_price="10"), branch_ids=frozenset({1}))
    geo = FakeGeo(Location(latitude=RIYADH[1], longitude=RIYADH[0], city="Riyadh"))
    assembler, _ = _assembler([branch_deal], geo=geo)

    placed = await assembler.create_order(
        CUSTOMER, _payload([(1, 1)], "20"), NOW, client_ip="8.8.8.8"
    )

    assert geo.calls == ["8.8.8.8"]
    assert placed.branch_id == 1
    assert placed.location_source == "ip"
    assert placed.subtotal == Decimal("20.00")


@pytest.mark.anyio
async def test_no_branch_in_range_leaves_order_unassigned():
    geo = FakeGeo(Location(latitude=JEDDAH[1], longitude=JEDDAH[0]))
    assembler, _ = _assembler(geo=geo, branches=[branch(1, *RIYADH)])

    placed = await assembler.create_order(
        CUSTOMER, _payload([(1, 1)], "20"), NOW, client_ip="8.8.8.8"
    )
    assert placed.branch_id is None


@pytest.mark.anyio
async def test_explicit_branch_must_be_active():
    assembler, orders = _assembler(branches=[branch(1, *RIYADH, is_active=False)])

    with pytest.raises(OrderValidationError):
        await assembler.create_order(CUSTOMER, _payload([(1, 1)], "20", branch_id=1), NOW)
    with pytest.raises(OrderValidationError):
        await assembler.create_order(CUSTOMER, _payload([(1, 1)], "20", branch_id=42), NOW)
    assert orders.orders == {}


@pytest.mark.anyio
async def test_unknown_or_inactive_products_are_rejected():
    assembler, orders = _assembler()

    with pytest.raises(NotFoundError):
        await assembler.create_order(CUSTOMER, _payload([(99, 1)], "1"), NOW)
    with pytest.raises(OrderValidationError):
        await assembler.create_order(CUSTOMER, _payload([(3, 1)], "5"), NOW)
    assert orders.orders == {}


@pytest.mark.anyio
async def test_only_customers_place_orders():
    assembler, _ = _assembler()

    with pytest.raises(PermissionDeniedError):
        await assembler.create_order(ADMIN, _payload([(1, 1)], "20"), NOW)


@pytest.mark.anyio
async def test_order_visibility():
    assembler, _ = _assembler()
    placed = await assembler.create_order(
        CUSTOMER, _payload([(1, 1)], "20", branch_id=1), NOW
    )

    assert (await assembler.get_order(CUSTOMER, placed.order_number)).id == placed.id
    assert (await assembler.get_order(ADMIN, placed.order_number)).id == placed.id
    assert (await assembler.get_order(OPERATOR_1, placed.order_number)).id == placed.id
    for outsider in (Actor("CUST2", "customer"), Actor("BR2", "branch", branch_id=2)):
        with pytest.raises(NotFoundError):
            await assembler.get_order(outsider, placed.order_number)


@pytest.mark.anyio
async def test_customer_order_history_is_paginated():
    assembler, _ = _assembler()
    for _ in range(3):
        await assembler.create_order(CUSTOMER, _payload([(2, 1)], "7.50"), NOW)

    page, total = await assembler.customer_orders(CUSTOMER, page=2, limit=2)
    assert total == 3
    assert [o.order_number for o in page] == ["MTC000001"]


def _storefront(assembler):
    return OfferResolver(assembler.campaigns, assembler.catalog, assembler.locator)


@pytest.mark.anyio
async def test_checkout_accepts_storefront_price_for_city_campaign_at_explicit_branch():
    city_deal = bulk_percent(1, "50", product_ids=frozenset({1}), cities=frozenset({"Riyadh"}))
    assembler, _ = _assembler([city_deal])

    resolved = await _storefront(assembler).build_context(branch_id=1)
    [(_, priced)] = await _storefront(assembler).price_product_ids([1], resolved.context, NOW)
    assert priced.effective_price == Decimal("10.00")

    placed = await assembler.create_order(
        CUSTOMER, _payload([(1, 1)], str(priced.effective_price), branch_id=1), NOW
    )
    assert placed.subtotal == Decimal("10.00")
    assert placed.branch_id == 1


@pytest.mark.anyio
async def test_checkout_prices_outside_search_radius_like_storefront():
    branch_deal = per_item(1, item(1, offer_price="10"), branch_ids=frozenset({2}))
    assembler, _ = _assembler([branch_deal])
    # about 60 km north of the Jeddah branch
    lat, lng = JEDDAH[1] + 0.55, JEDDAH[0]

    resolved = await _storefront(assembler).build_context(latitude=lat, longitude=lng)
    [(_, priced)] = await _storefront(assembler).price_product_ids([1], resolved.context, NOW)
    assert resolved.branch is None
    assert priced.effective_price == Decimal("20.00")

    placed = await assembler.create_order(
        CUSTOMER,
        _payload(
            [(1, 1)],
            str(priced.effective_price),
            client_location={"latitude": lat, "longitude": lng},
        ),
        NOW,
    )
    assert placed.subtotal == Decimal("20.00")
    assert placed.branch_id == 2
    assert placed.location_source == "client"
