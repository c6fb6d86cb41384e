"""Campaign ranking and the stackable/exclusive claim resolution."""

from __future__ import annotations

from dataclasses import dataclass
from functools import cmp_to_key
from typing import Iterable, Optional, Sequence

from storefront.services.domain import Campaign, ProductSnapshot

ITEM_MATCH_WEIGHT = 10
PRODUCT_MATCH_WEIGHT = 8
CATEGORY_MATCH_WEIGHT = 5


@dataclass(frozen=True, slots=True)
class RankedCampaign:
    campaign: Campaign
    relevance: Optional[int] = None


def relevance_score(campaign: Campaign, cart: Sequence[ProductSnapshot]) -> int:
    cart_ids = {p.id for p in cart}
    cart_categories = {p.category_id for p in cart if p.category_id is not None}
    score = ITEM_MATCH_WEIGHT * len(campaign.item_product_ids & cart_ids)
    score += PRODUCT_MATCH_WEIGHT * len(campaign.product_ids & cart_ids)
    score += CATEGORY_MATCH_WEIGHT * len(campaign.category_ids & cart_categories)
    return score


def _compare(a: RankedCampaign, b: RankedCampaign) -> int:
    if a.campaign.priority != b.campaign.priority:
        return b.campaign.priority - a.campaign.priority
    if a.relevance is not None and b.relevance is not None and a.relevance != b.relevance:
        return b.relevance - a.relevance
    a_start, b_start = a.campaign.starts_at, b.campaign.starts_at
    if a_start is not None and b_start is not None and a_start != b_start:
        return -1 if a_start < b_start else 1
    a_end, b_end = a.campaign.ends_at, b.campaign.ends_at
    if a_end is not None and b_end is not None and a_end != b_end:
        return -1 if a_end < b_end else 1
    return 0


def rank_campaigns(
    campaigns: Iterable[Campaign], cart: Optional[Sequence[ProductSnapshot]] = None
) -> list[Campaign]:
    """Sort by priority, cart relevance (when a cart is given), start, then end.

    Relevance only breaks ties and never leaves this function.
    """

    if cart:
        ranked = [RankedCampaign(c, relevance_score(c, cart)) for c in campaigns]
    else:
        ranked = [RankedCampaign(c) for c in campaigns]
    ranked.sort(key=cmp_to_key(_compare))
    return [r.campaign for r in ranked]


def resolve_stacking(sorted_campaigns: Iterable[Campaign]) -> list[Campaign]:
    """Accept campaigns in order, honouring exclusivity per claimed product.

    A stackable campaign is always accepted and joins each product's claim
    list. A non-stackable one is rejected when any of its products is already
    claimed by a non-stackable campaign of equal or higher priority;
    otherwise it becomes the sole claimant of each of its products, and any
    lower-priority exclusive campaign it displaces is withdrawn. On input
    from ``rank_campaigns`` the withdrawal never triggers.
    """

    claims: dict[int, list[Campaign]] = {}
    accepted: list[Campaign] = []
    for campaign in sorted_campaigns:
        products = campaign.claimed_product_ids
        if campaign.stackable:
            accepted.append(campaign)
            for product_id in products:
                claims.setdefault(product_id, []).append(campaign)
            continue
        holders = [holder for product_id in products for holder in claims.get(product_id, ())]
        if any(not h.stackable and h.priority >= campaign.priority for h in holders):
            continue
        for displaced in {h.id: h for h in holders if not h.stackable}.values():
            accepted = [c for c in accepted if c.id != displaced.id]
            for product_id in displaced.claimed_product_ids:
                remaining = [c for c in claims.get(product_id, ()) if c.id != displaced.id]
                claims[product_id] = remaining
        accepted.append(campaign)
        for product_id in products:
            claims[product_id] = [campaign]
    return accepted
