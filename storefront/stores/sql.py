"""SQLAlchemy adapters for the storage ports (MySQL via aiomysql)."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from fastapi import HTTPException, status
from loguru import logger
from sqlalchemy import delete, func, insert, or_, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.audit import log_audit
from storefront.core.clock import utcnow
from storefront.core.config import settings
from storefront.core.db import repeatable_read_transaction
from storefront.core.db_errors import raise_on_lock_conflict, with_db_retry
from storefront.core.errors import NotFoundError
from storefront.models import (
    Branch,
    CustomerAddress,
    NamedSequence,
    OfferCampaign,
    OfferCampaignItem,
    Order,
    OrderItem,
    Product,
)
from storefront.services.domain import (
    BranchPoint,
    BulkAmount,
    BulkPercent,
    Campaign,
    CampaignItem,
    OrderDraft,
    OrderLine,
    PerItem,
    PlacedOrder,
    PricingMode,
    ProductSnapshot,
    geofence_from_json,
    geofence_to_json,
)

T = TypeVar("T")

EARTH_RADIUS_M = 6371000
ORDER_SEQUENCE = "order_number"


def _branch(row: Branch) -> BranchPoint:
    return BranchPoint(
        id=row.id,
        name=row.name,
        longitude=row.longitude,
        latitude=row.latitude,
        city=row.city,
        is_active=row.is_active,
        address_text=row.address_text,
        phone=row.phone,
    )


def _product(row: Product) -> ProductSnapshot:
    return ProductSnapshot(
        id=row.id,
        title=row.title,
        price=Decimal(row.price),
        category_id=row.category_id,
        is_active=row.is_active,
        model_number=row.model_number,
        image=row.image,
    )


def _mode(row: OfferCampaign) -> PricingMode:
    if row.apply_mode == "bulkPercent":
        return BulkPercent(percent=Decimal(row.bulk_percent or 0))
    if row.apply_mode == "bulkAmount":
        return BulkAmount(amount=Decimal(row.bulk_amount or 0))
    return PerItem()


def _campaign(row: OfferCampaign) -> Campaign:
    return Campaign(
        id=row.id,
        title=row.title,
        mode=_mode(row),
        starts_at=row.starts_at,
        ends_at=row.ends_at,
        is_active=row.is_active,
        items=tuple(
            CampaignItem(product_id=i.product_id, offer_price=i.offer_price, percent=i.percent)
            for i in row.items
        ),
        product_ids=frozenset(row.product_ids or ()),
        category_ids=frozenset(row.category_ids or ()),
        branch_ids=frozenset(row.branch_ids or ()),
        cities=frozenset(row.cities or ()),
        geofence=geofence_from_json(row.geo),
        priority=row.priority,
        stackable=row.stackable,
        branch_id=row.branch_id,
        created_by=row.created_by,
        created_role=row.created_role,
        updated_at=row.updated_at,
    )


def _write_campaign(row: OfferCampaign, campaign: Campaign) -> None:
    mode = campaign.mode
    row.title = campaign.title
    row.starts_at = campaign.starts_at
    row.ends_at = campaign.ends_at
    row.is_active = campaign.is_active
    row.apply_mode = mode.kind
    row.bulk_percent = mode.percent if isinstance(mode, BulkPercent) else None
    row.bulk_amount = mode.amount if isinstance(mode, BulkAmount) else None
    row.product_ids = sorted(campaign.product_ids)
    row.category_ids = sorted(campaign.category_ids)
    row.branch_ids = sorted(campaign.branch_ids)
    row.cities = sorted(campaign.cities)
    row.geo = geofence_to_json(campaign.geofence)
    row.priority = campaign.priority
    row.stackable = campaign.stackable
    row.branch_id = campaign.branch_id
    row.items = [
        OfferCampaignItem(product_id=i.product_id, offer_price=i.offer_price, percent=i.percent)
        for i in campaign.items
    ]


def _live_clause(now: datetime):
    return (
        OfferCampaign.is_active.is_(True),
        or_(OfferCampaign.starts_at.is_(None), OfferCampaign.starts_at <= now),
        or_(OfferCampaign.ends_at.is_(None), OfferCampaign.ends_at >= now),
    )


async def _atomic(session: AsyncSession, operation: Callable[[], Awaitable[T]], label: str) -> T:
    async def attempt() -> T:
        try:
            async with repeatable_read_transaction(session):
                return await operation()
        except OperationalError as exc:
            raise_on_lock_conflict(exc)
            raise

    return await with_db_retry(session, attempt, label=label)


class SqlBranchIndex:
    """Branch lookups on the same 6371 km sphere as the haversine scan."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _distance(longitude: float, latitude: float):
        return func.ST_Distance_Sphere(
            func.POINT(Branch.longitude, Branch.latitude),
            func.POINT(longitude, latitude),
            EARTH_RADIUS_M,
        )

    async def nearest(
        self, longitude: float, latitude: float, max_distance_km: float
    ) -> Optional[BranchPoint]:
        distance = self._distance(longitude, latitude)
        row = (
            await self.session.execute(
                select(Branch)
                .where(Branch.is_active.is_(True), distance <= max_distance_km * 1000)
                .order_by(distance, Branch.id)
                .limit(1)
            )
        ).scalar_one_or_none()
        return _branch(row) if row else None

    async def within(
        self, longitude: float, latitude: float, radius_km: float
    ) -> list[BranchPoint]:
        distance = self._distance(longitude, latitude)
        rows = (
            await self.session.execute(
                select(Branch)
                .where(Branch.is_active.is_(True), distance <= radius_km * 1000)
                .order_by(distance, Branch.id)
            )
        ).scalars()
        return [_branch(row) for row in rows]

    async def active_branches(self) -> list[BranchPoint]:
        rows = (
            await self.session.execute(select(Branch).where(Branch.is_active.is_(True)))
        ).scalars()
        return [_branch(row) for row in rows]

    async def get(self, branch_id: int) -> Optional[BranchPoint]:
        row = await self.session.get(Branch, branch_id)
        return _branch(row) if row else None


class SqlCatalog:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def products(self, product_ids: Iterable[int]) -> dict[int, ProductSnapshot]:
        ids = list(set(product_ids))
        if not ids:
            return {}
        rows = (await self.session.execute(select(Product).where(Product.id.in_(ids)))).scalars()
        return {row.id: _product(row) for row in rows}

    async def active_products(
        self, *, category_id: Optional[int] = None, limit: int = 50, offset: int = 0
    ) -> list[ProductSnapshot]:
        stmt = select(Product).where(Product.is_active.is_(True))
        if category_id is not None:
            stmt = stmt.where(Product.category_id == category_id)
        rows = (
            await self.session.execute(stmt.order_by(Product.id).limit(limit).offset(offset))
        ).scalars()
        return [_product(row) for row in rows]


class SqlAuditTrail:
    def __init__(self, session: AsyncSession):
        self.session = session

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
    ) -> None:
        await log_audit(
            self.session,
            actor_code,
            actor_role,
            entity,
            entity_id,
            action,
            details,
            remote_addr,
        )


class SqlCampaignStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def atomic(self, operation: Callable[[], Awaitable[T]], *, label: str) -> T:
        return await _atomic(self.session, operation, label)

    async def live_campaigns(self, now: datetime) -> list[Campaign]:
        rows = (
            await self.session.execute(select(OfferCampaign).where(*_live_clause(now)))
        ).scalars()
        return [_campaign(row) for row in rows]

    async def get(self, campaign_id: int) -> Optional[Campaign]:
        row = await self.session.get(OfferCampaign, campaign_id)
        return _campaign(row) if row else None

    async def list_campaigns(
        self,
        *,
        scope: Optional[str] = None,
        visible_to_branch: Optional[int] = None,
        is_active: Optional[bool] = None,
    ) -> list[Campaign]:
        stmt = select(OfferCampaign)
        if scope == "global":
            stmt = stmt.where(OfferCampaign.branch_id.is_(None))
        elif scope == "branch":
            stmt = stmt.where(OfferCampaign.branch_id.is_not(None))
        if visible_to_branch is not None:
            stmt = stmt.where(
                or_(OfferCampaign.branch_id.is_(None), OfferCampaign.branch_id == visible_to_branch)
            )
        if is_active is not None:
            stmt = stmt.where(OfferCampaign.is_active.is_(is_active))
        rows = (
            await self.session.execute(
                stmt.order_by(OfferCampaign.created_at.desc(), OfferCampaign.id.desc())
            )
        ).scalars()
        return [_campaign(row) for row in rows]

    async def overlapping(
        self,
        product_ids: Iterable[int],
        now: datetime,
        *,
        exclude_id: Optional[int] = None,
        target_branch: Optional[int] = None,
    ) -> list[Campaign]:
        wanted = set(product_ids)
        stmt = select(OfferCampaign).where(*_live_clause(now))
        if exclude_id is not None:
            stmt = stmt.where(OfferCampaign.id != exclude_id)
        if target_branch is not None:
            stmt = stmt.where(
                or_(OfferCampaign.branch_id.is_(None), OfferCampaign.branch_id == target_branch)
            )
        rows = (await self.session.execute(stmt)).scalars()
        campaigns = [_campaign(row) for row in rows]
        return [c for c in campaigns if c.claimed_product_ids & wanted]

    async def save(self, campaign: Campaign, *, actor_code: str) -> Campaign:
        now = utcnow()
        if campaign.id == 0:
            row = OfferCampaign(
                created_by=campaign.created_by or actor_code,
                created_role=campaign.created_role,
                created_at=now,
            )
            self.session.add(row)
        else:
            row = await self.session.scalar(
                select(OfferCampaign)
                .where(OfferCampaign.id == campaign.id)
                .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
            )
            if row is None:
                raise NotFoundError("Offer campaign not found")
            row.updated_by = actor_code
        _write_campaign(row, campaign)
        row.updated_at = now
        await self.session.flush()
        return _campaign(row)

    async def delete(self, campaign_id: int) -> None:
        await self.session.execute(delete(OfferCampaign).where(OfferCampaign.id == campaign_id))


class SqlOrderStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def atomic(self, operation: Callable[[], Awaitable[T]], *, label: str) -> T:
        return await _atomic(self.session, operation, label)

    async def _reserve_sequence_number(self, seq_name: str) -> int:
        """Reserve and return the next value of ``seq_name`` under a row lock."""

        max_attempts = 5
        attempts = 0
        while True:
            attempts += 1
            row = await self.session.scalar(
                select(NamedSequence)
                .where(NamedSequence.seq_name == seq_name)
                .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
            )
            if row:
                current = int(row.seq_no or 1)
                row.seq_no = current + 1
                await self.session.flush()
                return current
            try:
                async with self.session.begin_nested():
                    await self.session.execute(
                        insert(NamedSequence).values(seq_name=seq_name, seq_no=1)
                    )
            except IntegrityError:
                # Another transaction created the row first; lock it on the next pass.
                if attempts >= max_attempts:
                    logger.bind(seq_name=seq_name).warning("sequence_reservation_exhausted")
                    raise HTTPException(
                        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                        detail="Sequence allocation failed. Please retry.",
                    )

    async def next_order_number(self) -> str:
        seq = await self._reserve_sequence_number(ORDER_SEQUENCE)
        return f"{settings.ORDER_NUMBER_PREFIX}{seq:06d}"

    @staticmethod
    def _placed(row: Order) -> PlacedOrder:
        return PlacedOrder(
            id=row.id,
            order_number=row.order_number,
            customer_code=row.customer_code,
            branch_id=row.branch_id,
            shipping_address=row.shipping_address,
            payment_method=row.payment_method,
            lines=tuple(
                OrderLine(
                    product_id=i.product_id,
                    title=i.title,
                    price=i.price,
                    offer_price=i.offer_price,
                    quantity=i.quantity,
                    subtotal=i.subtotal,
                    image=i.image,
                )
                for i in row.items
            ),
            subtotal=row.subtotal,
            shipping=row.shipping,
            total=row.total,
            status=row.status,
            payment_status=row.payment_status,
            created_at=row.created_at,
            notes=row.notes,
            location_source=row.location_source,
        )

    async def add_order(self, draft: OrderDraft) -> PlacedOrder:
        lng, lat = draft.customer_coordinates or (None, None)
        row = Order(
            order_number=draft.order_number,
            customer_code=draft.customer_code,
            branch_id=draft.branch_id,
            shipping_address=draft.shipping_address,
            payment_method=draft.payment_method,
            subtotal=draft.subtotal,
            shipping=draft.shipping,
            total=draft.total,
            status="pending",
            payment_status="pending",
            notes=draft.notes,
            customer_ip=draft.customer_ip,
            customer_latitude=lat,
            customer_longitude=lng,
            location_source=draft.location_source,
            created_at=utcnow(),
            items=[
                OrderItem(
                    product_id=line.product_id,
                    title=line.title,
                    price=line.price,
                    offer_price=line.offer_price,
                    quantity=line.quantity,
                    subtotal=line.subtotal,
                    image=line.image,
                )
                for line in draft.lines
            ],
        )
        self.session.add(row)
        await self.session.flush()
        return self._placed(row)

    async def save_address(self, customer_code: str, label: str, address: dict) -> None:
        self.session.add(
            CustomerAddress(customer_code=customer_code, label=label, address=address, created_at=utcnow())
        )
        await self.session.flush()

    async def get_order(self, order_number: str) -> Optional[PlacedOrder]:
        row = await self.session.scalar(select(Order).where(Order.order_number == order_number))
        return self._placed(row) if row else None

    async def customer_orders(
        self, customer_code: str, *, status: Optional[str] = None, limit: int = 10, offset: int = 0
    ) -> tuple[list[PlacedOrder], int]:
        filters = [Order.customer_code == customer_code]
        if status is not None:
            filters.append(Order.status == status)
        total = await self.session.scalar(select(func.count()).select_from(Order).where(*filters))
        rows = (
            await self.session.execute(
                select(Order)
                .where(*filters)
                .order_by(Order.created_at.desc(), Order.id.desc())
                .limit(limit)
                .offset(offset)
            )
        ).scalars()
        return [self._placed(row) for row in rows], int(total or 0)
