"""Effective-price calculation for products under live campaigns."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

from storefront.services.domain import (
    BulkAmount,
    BulkPercent,
    Campaign,
    PerItem,
    ProductSnapshot,
)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class AppliedDiscount:
    campaign_id: int
    title: str
    apply_mode: str
    discount_amount: Decimal
    discount_percent: Decimal


@dataclass(frozen=True, slots=True)
class PricedProduct:
    product_id: int
    original_price: Decimal
    effective_price: Decimal
    has_offer: bool
    discount_amount: Optional[Decimal] = None
    discount_percent: Optional[Decimal] = None
    contributing_campaigns: tuple[AppliedDiscount, ...] = field(default_factory=tuple)


def _bulk_price(price: Decimal, campaign: Campaign) -> Decimal:
    mode = campaign.mode
    if isinstance(mode, BulkPercent):
        return price * (1 - mode.percent / HUNDRED)
    if isinstance(mode, BulkAmount):
        return max(ZERO, price - mode.amount)
    return price


def candidate_price(product: ProductSnapshot, campaign: Campaign) -> Optional[Decimal]:
    """Price of ``product`` under ``campaign``, or ``None`` when it does not apply.

    Applicability is decided by the first matching rule: item override, then
    explicit product id, then category. Under perItem only an item override
    with a positive fixed price or percent moves the price.
    """

    price = product.price
    item = campaign.item_for(product.id)
    if item is not None:
        if isinstance(campaign.mode, PerItem):
            if item.offer_price is not None and item.offer_price > 0:
                return item.offer_price
            if item.percent is not None and item.percent > 0:
                return price * (1 - item.percent / HUNDRED)
            return price
        return _bulk_price(price, campaign)
    if product.id in campaign.product_ids:
        return _bulk_price(price, campaign)
    if product.category_id is not None and product.category_id in campaign.category_ids:
        return _bulk_price(price, campaign)
    return None


def pricing_order(campaigns: Iterable[Campaign]) -> list[Campaign]:
    """Priority descending, then earlier start first; open starts sort first."""

    return sorted(
        campaigns,
        key=lambda c: (-c.priority, c.starts_at or datetime.min, c.id),
    )


def _percent_of(discount: Decimal, original: Decimal) -> Decimal:
    if original <= 0:
        return ZERO
    return money(discount / original * HUNDRED)


def price_for(product: ProductSnapshot, campaigns: Sequence[Campaign]) -> PricedProduct:
    """Lowest achievable price for ``product`` among ``campaigns``.

    ``campaigns`` must already be filtered to live, visible ones. Every
    campaign that lowers the running best is recorded, in evaluation order.
    """

    original = product.price
    best = original
    applied: list[AppliedDiscount] = []
    for campaign in campaigns:
        candidate = candidate_price(product, campaign)
        if candidate is None or candidate >= best:
            continue
        best = candidate
        discount = original - best
        applied.append(
            AppliedDiscount(
                campaign_id=campaign.id,
                title=campaign.title,
                apply_mode=campaign.mode.kind,
                discount_amount=money(discount),
                discount_percent=_percent_of(discount, original),
            )
        )

    if not applied:
        return PricedProduct(
            product_id=product.id,
            original_price=money(original),
            effective_price=money(original),
            has_offer=False,
        )
    effective = money(best)
    discount = money(original - best)
    return PricedProduct(
        product_id=product.id,
        original_price=money(original),
        effective_price=effective,
        has_offer=True,
        discount_amount=discount,
        discount_percent=_percent_of(original - best, original),
        contributing_campaigns=tuple(applied),
    )


def price_products(
    products: Iterable[ProductSnapshot], campaigns: Iterable[Campaign]
) -> list[PricedProduct]:
    ordered = pricing_order(campaigns)
    return [price_for(product, ordered) for product in products]
