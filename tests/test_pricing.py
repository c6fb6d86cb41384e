from datetime import timedelta
from decimal import Decimal

import pytest

from factories import NOW, bulk_amount, bulk_percent, item, per_item, product
from storefront.services.domain import LocationContext
from storefront.services.pricing import candidate_price, price_for, price_products, pricing_order
from storefront.services.stacking import rank_campaigns, resolve_stacking
from storefront.services.targeting import active_campaigns

P = product(1, "20", category_id=7)


def test_no_campaigns_means_no_offer():
    priced = price_for(P, [])
    assert not priced.has_offer
    assert priced.effective_price == priced.original_price == Decimal("20.00")
    assert priced.discount_amount is None
    assert priced.contributing_campaigns == ()


def test_branch_campaign_beats_global_percent_and_is_the_only_one_recorded():
    global_a = bulk_percent(1, "10", product_ids=frozenset({1}), priority=0)
    branch_b = per_item(2, item(1, offer_price="5"), branch_ids=frozenset({10}), priority=5)
    live = active_campaigns([global_a, branch_b], NOW, LocationContext(branch_id=10))

    [priced] = price_products([P], live)

    assert priced.effective_price == Decimal("5.00")
    assert priced.discount_amount == Decimal("15.00")
    assert priced.discount_percent == Decimal("75.00")
    assert [a.campaign_id for a in priced.contributing_campaigns] == [2]
    assert priced.contributing_campaigns[0].apply_mode == "perItem"


def test_branch_campaign_invisible_elsewhere():
    global_a = bulk_percent(1, "10", product_ids=frozenset({1}))
    branch_b = per_item(2, item(1, offer_price="5"), branch_ids=frozenset({10}), priority=5)
    live = active_campaigns([global_a, branch_b], NOW, LocationContext(branch_id=11))

    [priced] = price_products([P], live)
    assert priced.effective_price == Decimal("18.00")
    assert [a.campaign_id for a in priced.contributing_campaigns] == [1]


def test_stackable_campaigns_take_single_best_discount():
    first = bulk_amount(1, "2", product_ids=frozenset({1}), stackable=True)
    second = bulk_amount(2, "2", product_ids=frozenset({1}), stackable=True)

    [priced] = price_products([P], [first, second])
    assert priced.effective_price == Decimal("18.00")

    listed = resolve_stacking(rank_campaigns([first, second]))
    assert {c.id for c in listed} == {1, 2}


def test_lower_priority_can_still_lower_the_price():
    high = bulk_percent(1, "5", product_ids=frozenset({1}), priority=9)
    low = bulk_percent(2, "50", product_ids=frozenset({1}), priority=1)

    [priced] = price_products([P], [low, high])
    assert priced.effective_price == Decimal("10.00")
    assert [a.campaign_id for a in priced.contributing_campaigns] == [1, 2]
    assert priced.contributing_campaigns[0].discount_amount == Decimal("1.00")


def test_evaluation_order_is_priority_then_start():
    late = bulk_percent(1, "10", priority=3, starts_at=NOW - timedelta(days=1))
    early = bulk_percent(2, "10", priority=3, starts_at=NOW - timedelta(days=5))
    open_start = bulk_percent(3, "10", priority=3)
    top = bulk_percent(4, "10", priority=8, starts_at=NOW)

    assert [c.id for c in pricing_order([late, early, open_start, top])] == [4, 3, 2, 1]


@pytest.mark.parametrize(
    "campaign, expected",
    [
        (per_item(1, item(1, offer_price="12.50")), Decimal("12.50")),
        (per_item(1, item(1, percent="25")), Decimal("15")),
        (per_item(1, item(1, offer_price="0", percent="10")), Decimal("18")),
        (per_item(1, item(1)), Decimal("20")),
        (bulk_percent(1, "10", items=(item(1, offer_price="1"),)), Decimal("18")),
        (bulk_amount(1, "3", category_ids=frozenset({7})), Decimal("17")),
        (bulk_amount(1, "50", product_ids=frozenset({1})), Decimal("0")),
        (per_item(1, product_ids=frozenset({1})), Decimal("20")),
        (bulk_percent(1, "10", category_ids=frozenset({8})), None),
    ],
    ids=[
        "fixed-price",
        "item-percent",
        "zero-fixed-falls-to-percent",
        "empty-item",
        "bulk-mode-ignores-item-price",
        "category-amount",
        "amount-floors-at-zero",
        "per-item-by-product-id",
        "not-covered",
    ],
)
def test_candidate_price_rules(campaign, expected):
    assert candidate_price(P, campaign) == expected


def test_effective_price_never_negative_or_above_original():
    campaigns = [
        bulk_amount(1, "999", product_ids=frozenset({1, 2})),
        bulk_percent(2, "100", category_ids=frozenset({7})),
        per_item(3, item(2, offer_price="30")),
    ]
    products = [P, product(2, "25")]
    for priced in price_products(products, campaigns):
        assert Decimal("0") <= priced.effective_price <= priced.original_price


def test_money_is_rounded_half_up():
    cheap = product(5, "0.05")
    [priced] = price_products([cheap], [bulk_percent(1, "10", product_ids=frozenset({5}))])
    assert priced.effective_price == Decimal("0.05")
    assert priced.discount_amount == Decimal("0.01")
    assert priced.discount_percent == Decimal("10.00")
