"""Small builders for domain values used across the test-suite."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from storefront.services.domain import (
    Actor,
    BranchPoint,
    BulkAmount,
    BulkPercent,
    Campaign,
    CampaignItem,
    PerItem,
    ProductSnapshot,
)

NOW = datetime(2026, 6, 1, 12, 0, 0)

# Riyadh and Jeddah, roughly 850 km apart
RIYADH = (46.6753, 24.7136)
JEDDAH = (39.1925, 21.4858)

ADMIN = Actor(user_code="ADM1", role="admin", remote_addr="10.0.0.1")
OPERATOR_1 = Actor(user_code="BR1", role="branch", branch_id=1)
OPERATOR_2 = Actor(user_code="BR2", role="branch", branch_id=2)
CUSTOMER = Actor(user_code="CUST1", role="customer")


def product(pid: int, price: str = "100", *, category_id=None, is_active=True, title=None):
    return ProductSnapshot(
        id=pid,
        title=title or f"Product {pid}",
        price=Decimal(price),
        category_id=category_id,
        is_active=is_active,
    )


def branch(bid: int, lng: float, lat: float, *, city=None, is_active=True):
    return BranchPoint(
        id=bid, name=f"Branch {bid}", longitude=lng, latitude=lat, city=city, is_active=is_active
    )


def item(pid: int, offer_price=None, percent=None):
    return CampaignItem(
        product_id=pid,
        offer_price=Decimal(offer_price) if offer_price is not None else None,
        percent=Decimal(percent) if percent is not None else None,
    )


def per_item(cid: int, *items, **kwargs) -> Campaign:
    return Campaign(id=cid, title=kwargs.pop("title", f"Campaign {cid}"), mode=PerItem(), items=tuple(items), **kwargs)


def bulk_percent(cid: int, percent: str, **kwargs) -> Campaign:
    return Campaign(
        id=cid,
        title=kwargs.pop("title", f"Campaign {cid}"),
        mode=BulkPercent(Decimal(percent)),
        **kwargs,
    )


def bulk_amount(cid: int, amount: str, **kwargs) -> Campaign:
    return Campaign(
        id=cid,
        title=kwargs.pop("title", f"Campaign {cid}"),
        mode=BulkAmount(Decimal(amount)),
        **kwargs,
    )
