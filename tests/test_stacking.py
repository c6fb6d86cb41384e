import itertools
from datetime import timedelta

from factories import NOW, bulk_amount, bulk_percent, item, per_item, product
from storefront.services.stacking import rank_campaigns, relevance_score, resolve_stacking


def _exclusive_claims_are_unique(accepted):
    seen = {}
    for campaign in accepted:
        if campaign.stackable:
            continue
        for pid in campaign.claimed_product_ids:
            if pid in seen:
                return False
            seen[pid] = campaign.id
    return True


def test_two_stackables_on_one_product_are_both_applied():
    a = bulk_amount(1, "2", product_ids=frozenset({1}), stackable=True)
    b = bulk_amount(2, "2", product_ids=frozenset({1}), stackable=True)

    assert [c.id for c in resolve_stacking(rank_campaigns([a, b]))] == [1, 2]


def test_exclusive_campaign_loses_to_higher_priority_exclusive():
    low = bulk_percent(1, "10", product_ids=frozenset({1, 2}), priority=1)
    high = bulk_percent(2, "20", product_ids=frozenset({2}), priority=5)

    applied = resolve_stacking(rank_campaigns([low, high]))
    assert [c.id for c in applied] == [2]


def test_higher_priority_wins_in_any_input_order():
    campaigns = [
        bulk_percent(1, "10", product_ids=frozenset({1}), priority=1),
        per_item(2, item(1, offer_price="5"), priority=7),
        bulk_amount(3, "1", product_ids=frozenset({1}), stackable=True),
        bulk_percent(4, "5", product_ids=frozenset({1, 9}), priority=3),
    ]
    for order in itertools.permutations(campaigns):
        applied = resolve_stacking(order)
        ids = {c.id for c in applied}
        assert 2 in ids and 3 in ids
        assert 1 not in ids and 4 not in ids
        assert _exclusive_claims_are_unique(applied)


def test_equal_priority_keeps_the_first_exclusive():
    first = bulk_percent(1, "10", product_ids=frozenset({1}))
    second = bulk_percent(2, "30", product_ids=frozenset({1}))

    assert [c.id for c in resolve_stacking([first, second])] == [1]
    assert [c.id for c in resolve_stacking([second, first])] == [2]


def test_exclusive_after_stackable_on_same_product_is_accepted():
    stack = bulk_amount(1, "2", product_ids=frozenset({1}), stackable=True, priority=9)
    exclusive = bulk_percent(2, "10", product_ids=frozenset({1}))

    applied = resolve_stacking(rank_campaigns([exclusive, stack]))
    assert [c.id for c in applied] == [1, 2]


def test_category_only_campaigns_claim_nothing():
    a = bulk_percent(1, "10", category_ids=frozenset({3}))
    b = bulk_percent(2, "10", category_ids=frozenset({3}))

    assert len(resolve_stacking([a, b])) == 2


def test_ranking_uses_priority_then_start_then_end():
    base = NOW - timedelta(days=10)
    a = bulk_percent(1, "10", priority=1, starts_at=base, ends_at=NOW + timedelta(days=3))
    b = bulk_percent(2, "10", priority=1, starts_at=base, ends_at=NOW + timedelta(days=1))
    c = bulk_percent(3, "10", priority=1, starts_at=base - timedelta(days=1))
    d = bulk_percent(4, "10", priority=2)

    assert [x.id for x in rank_campaigns([a, b, c, d])] == [4, 3, 2, 1]


def test_cart_relevance_breaks_priority_ties():
    cart = [product(1, category_id=5), product(2, category_id=6)]
    by_category = bulk_percent(1, "10", category_ids=frozenset({5}))
    by_item = per_item(2, item(1, offer_price="1"), item(2, offer_price="1"))
    unrelated = bulk_percent(3, "10", product_ids=frozenset({99}))

    assert relevance_score(by_item, cart) == 20
    assert relevance_score(by_category, cart) == 5
    assert relevance_score(unrelated, cart) == 0
    ranked = rank_campaigns([unrelated, by_category, by_item], cart)
    assert [c.id for c in ranked] == [2, 1, 3]


def test_relevance_never_overrides_priority():
    cart = [product(1)]
    relevant = bulk_percent(1, "10", product_ids=frozenset({1}), priority=0)
    important = bulk_percent(2, "10", product_ids=frozenset({50}), priority=1)

    assert [c.id for c in rank_campaigns([relevant, important], cart)] == [2, 1]
