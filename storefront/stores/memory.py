"""In-memory adapters for the storage ports.

Used by the test-suite and local tooling; behaviour mirrors the SQL adapters
without a database. ``atomic`` snapshots state and restores it when the unit
of work raises.
"""

from __future__ import annotations

import copy
from dataclasses import replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from storefront.core.clock import utcnow
from storefront.core.config import settings
from storefront.services.branch_locator import nearest_by_scan
from storefront.services.domain import (
    BranchPoint,
    Campaign,
    OrderDraft,
    PlacedOrder,
    ProductSnapshot,
)
from storefront.services.geo import distance_km
from storefront.services.targeting import is_live

T = TypeVar("T")


class InMemoryBranchIndex:
    def __init__(self, branches: Iterable[BranchPoint] = ()):
        self.branches = {b.id: b for b in branches}

    async def nearest(
        self, longitude: float, latitude: float, max_distance_km: float
    ) -> Optional[BranchPoint]:
        return nearest_by_scan(self.branches.values(), longitude, latitude, max_distance_km)

    async def within(
        self, longitude: float, latitude: float, radius_km: float
    ) -> list[BranchPoint]:
        hits = []
        for branch in self.branches.values():
            if not branch.is_active:
                continue
            km = distance_km(latitude, longitude, branch.latitude, branch.longitude)
            if km <= radius_km:
                hits.append((km, branch.id, branch))
        return [branch for _, _, branch in sorted(hits, key=lambda hit: hit[:2])]

    async def active_branches(self) -> list[BranchPoint]:
        return [b for b in self.branches.values() if b.is_active]

    async def get(self, branch_id: int) -> Optional[BranchPoint]:
        return self.branches.get(branch_id)


class InMemoryCatalog:
    def __init__(self, products: Iterable[ProductSnapshot] = ()):
        self.items = {p.id: p for p in products}

    async def products(self, product_ids: Iterable[int]) -> dict[int, ProductSnapshot]:
        return {pid: self.items[pid] for pid in product_ids if pid in self.items}

    async def active_products(
        self, *, category_id: Optional[int] = None, limit: int = 50, offset: int = 0
    ) -> list[ProductSnapshot]:
        rows = [
            p
            for p in sorted(self.items.values(), key=lambda p: p.id)
            if p.is_active and (category_id is None or p.category_id == category_id)
        ]
        return rows[offset : offset + limit]


class InMemoryAuditTrail:
    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    async def record(self, **entry: Any) -> None:
        self.entries.append(entry)


class _Snapshotting:
    """Restores the ``_state_attrs`` attributes when an atomic unit fails."""

    _state_attrs: tuple[str, ...] = ()

    async def atomic(self, operation: Callable[[], Awaitable[T]], *, label: str) -> T:
        snapshot = {name: copy.copy(getattr(self, name)) for name in self._state_attrs}
        try:
            return await operation()
        except BaseException:
            for name, value in snapshot.items():
                setattr(self, name, value)
            raise


class InMemoryCampaignStore(_Snapshotting):
    _state_attrs = ("campaigns", "_next_id")

    def __init__(self, campaigns: Iterable[Campaign] = ()):
        self.campaigns: dict[int, Campaign] = {c.id: c for c in campaigns}
        self._next_id = max(self.campaigns, default=0) + 1

    async def live_campaigns(self, now: datetime) -> list[Campaign]:
        return [c for c in self.campaigns.values() if is_live(c, now)]

    async def get(self, campaign_id: int) -> Optional[Campaign]:
        return self.campaigns.get(campaign_id)

    async def list_campaigns(
        self,
        *,
        scope: Optional[str] = None,
        visible_to_branch: Optional[int] = None,
        is_active: Optional[bool] = None,
    ) -> list[Campaign]:
        rows = sorted(self.campaigns.values(), key=lambda c: c.id, reverse=True)
        if scope == "global":
            rows = [c for c in rows if c.branch_id is None]
        elif scope == "branch":
            rows = [c for c in rows if c.branch_id is not None]
        if visible_to_branch is not None:
            rows = [c for c in rows if c.branch_id in (None, visible_to_branch)]
        if is_active is not None:
            rows = [c for c in rows if c.is_active == is_active]
        return rows

    async def overlapping(
        self,
        product_ids: Iterable[int],
        now: datetime,
        *,
        exclude_id: Optional[int] = None,
        target_branch: Optional[int] = None,
    ) -> list[Campaign]:
        wanted = set(product_ids)
        rows = []
        for campaign in await self.live_campaigns(now):
            if campaign.id == exclude_id:
                continue
            if target_branch is not None and campaign.branch_id not in (None, target_branch):
                continue
            if campaign.claimed_product_ids & wanted:
                rows.append(campaign)
        return rows

    async def save(self, campaign: Campaign, *, actor_code: str) -> Campaign:
        if campaign.id == 0:
            campaign = replace(campaign, id=self._next_id)
            self._next_id += 1
        saved = replace(campaign, updated_at=utcnow())
        self.campaigns[saved.id] = saved
        return saved

    async def delete(self, campaign_id: int) -> None:
        self.campaigns.pop(campaign_id, None)


class InMemoryOrderStore(_Snapshotting):
    _state_attrs = ("orders", "addresses", "_seq")

    def __init__(self) -> None:
        self.orders: dict[str, PlacedOrder] = {}
        self.addresses: list[dict[str, Any]] = []
        self._seq = 0

    async def next_order_number(self) -> str:
        self._seq += 1
        return f"{settings.ORDER_NUMBER_PREFIX}{self._seq:06d}"

    async def add_order(self, draft: OrderDraft) -> PlacedOrder:
        if draft.order_number in self.orders:
            raise ValueError(f"duplicate order number {draft.order_number}")
        order = PlacedOrder(
            id=len(self.orders) + 1,
            order_number=draft.order_number,
            customer_code=draft.customer_code,
            branch_id=draft.branch_id,
            shipping_address=dict(draft.shipping_address),
            payment_method=draft.payment_method,
            lines=draft.lines,
            subtotal=draft.subtotal,
            shipping=draft.shipping,
            total=draft.total,
            status="pending",
            payment_status="pending",
            created_at=utcnow(),
            notes=draft.notes,
            location_source=draft.location_source,
        )
        self.orders[order.order_number] = order
        return order

    async def save_address(self, customer_code: str, label: str, address: dict) -> None:
        self.addresses.append({"customer_code": customer_code, "label": label, "address": dict(address)})

    async def get_order(self, order_number: str) -> Optional[PlacedOrder]:
        return self.orders.get(order_number)

    async def customer_orders(
        self, customer_code: str, *, status: Optional[str] = None, limit: int = 10, offset: int = 0
    ) -> tuple[list[PlacedOrder], int]:
        rows = [
            o
            for o in sorted(self.orders.values(), key=lambda o: o.id, reverse=True)
            if o.customer_code == customer_code and (status is None or o.status == status)
        ]
        return rows[offset : offset + limit], len(rows)
