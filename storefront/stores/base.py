"""Storage ports the services depend on.

SQL adapters live in ``storefront.stores.sql``; in-memory adapters used by
tests and local tooling live in ``storefront.stores.memory``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol, TypeVar

from storefront.services.domain import (
    BranchPoint,
    Campaign,
    OrderDraft,
    PlacedOrder,
    ProductSnapshot,
)

T = TypeVar("T")


class BranchIndex(Protocol):
    async def nearest(
        self, longitude: float, latitude: float, max_distance_km: float
    ) -> Optional[BranchPoint]: ...

    async def within(
        self, longitude: float, latitude: float, radius_km: float
    ) -> list[BranchPoint]: ...

    async def active_branches(self) -> list[BranchPoint]: ...

    async def get(self, branch_id: int) -> Optional[BranchPoint]: ...


class Catalog(Protocol):
    async def products(self, product_ids: Iterable[int]) -> dict[int, ProductSnapshot]: ...

    async def active_products(
        self, *, category_id: Optional[int] = None, limit: int = 50, offset: int = 0
    ) -> list[ProductSnapshot]: ...


class AuditTrail(Protocol):
    async def record(
        self,
        *,
        actor_code: str,
        actor_role: str,
        entity: str,
        entity_id: Optional[str],
        action: str,
        details: Optional[dict[str, Any]] = None,
        remote_addr: Optional[str] = None,
    ) -> None: ...


class CampaignStore(Protocol):
    async def atomic(self, operation: Callable[[], Awaitable[T]], *, label: str) -> T:
        """Run ``operation`` as one all-or-nothing unit of work."""
        ...

    async def live_campaigns(self, now: datetime) -> list[Campaign]: ...

    async def get(self, campaign_id: int) -> Optional[Campaign]: ...

    async def list_campaigns(
        self,
        *,
        scope: Optional[str] = None,
        visible_to_branch: Optional[int] = None,
        is_active: Optional[bool] = None,
    ) -> list[Campaign]: ...

    async def overlapping(
        self,
        product_ids: Iterable[int],
        now: datetime,
        *,
        exclude_id: Optional[int] = None,
        target_branch: Optional[int] = None,
    ) -> list[Campaign]: ...

    async def save(self, campaign: Campaign, *, actor_code: str) -> Campaign: ...

    async def delete(self, campaign_id: int) -> None: ...


class OrderStore(Protocol):
    async def atomic(self, operation: Callable[[], Awaitable[T]], *, label: str) -> T:
        """Run ``operation`` as one all-or-nothing unit of work."""
        ...

    async def next_order_number(self) -> str: ...

    async def add_order(self, draft: OrderDraft) -> PlacedOrder: ...

    async def save_address(self, customer_code: str, label: str, address: dict) -> None: ...

    async def get_order(self, order_number: str) -> Optional[PlacedOrder]: ...

    async def customer_orders(
        self, customer_code: str, *, status: Optional[str] = None, limit: int = 10, offset: int = 0
    ) -> tuple[list[PlacedOrder], int]: ...
