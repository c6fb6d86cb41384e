"""Checkout: server-side repricing, branch assignment and atomic persistence."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from loguru import logger

from storefront.core.config import settings
from storefront.core.errors import (
    NotFoundError,
    OrderIntegrityError,
    OrderValidationError,
    PermissionDeniedError,
)
from storefront.schemas.order import OrderCreate
from storefront.services.branch_locator import BranchLocator
from storefront.services.domain import (
    Actor,
    BranchPoint,
    LocationContext,
    OrderDraft,
    OrderLine,
    PlacedOrder,
)
from storefront.services.geo import GeoResolver
from storefront.services.offer_resolution import OfferResolver
from storefront.services.pricing import money, price_products
from storefront.services.targeting import active_campaigns
from storefront.stores.base import CampaignStore, Catalog, OrderStore


@dataclass(frozen=True, slots=True)
class BranchAssignment:
    branch: Optional[BranchPoint]
    coordinates: Optional[tuple[float, float]]  # (lng, lat)
    source: str  # client | ip | none


class OrderAssembler:
    def __init__(
        self,
        orders: OrderStore,
        catalog: Catalog,
        campaigns: CampaignStore,
        locator: BranchLocator,
        geo: Optional[GeoResolver] = None,
    ):
        self.orders = orders
        self.catalog = catalog
        self.campaigns = campaigns
        self.locator = locator
        self.geo = geo

    async def assign_branch(self, payload: OrderCreate, client_ip: Optional[str]) -> BranchAssignment:
        """Pick the fulfilment branch: explicit choice, device coordinates, then IP.

        Failing to find one leaves the order unassigned; it never fails checkout.
        """

        if payload.branch_id is not None:
            branch = await self.locator.get(payload.branch_id)
            if branch is None or not branch.is_active:
                raise OrderValidationError("Selected branch is not available")
            coords = None
            if payload.client_location is not None:
                coords = (payload.client_location.longitude, payload.client_location.latitude)
            return BranchAssignment(branch, coords, "client" if coords else "none")

        if payload.client_location is not None:
            lng, lat = payload.client_location.longitude, payload.client_location.latitude
            branch = await self.locator.nearest(lng, lat, settings.ORDER_BRANCH_MAX_DISTANCE_KM)
            if branch is None:
                logger.bind(lat=lat, lng=lng).warning("order_branch_unassigned")
            return BranchAssignment(branch, (lng, lat), "client")

        if client_ip and self.geo is not None:
            location = await self.geo.resolve_from_ip(client_ip)
            if location is not None:
                branch = await self.locator.nearest(
                    location.longitude, location.latitude, settings.IP_BRANCH_MAX_DISTANCE_KM
                )
                if branch is not None:
                    return BranchAssignment(branch, (location.longitude, location.latitude), "ip")
            logger.bind(ip=client_ip).warning("order_branch_unassigned")
            return BranchAssignment(None, None, "ip")

        return BranchAssignment(None, None, "none")

    async def _pricing_context(self, payload: OrderCreate) -> LocationContext:
        """Price on the same context the storefront built for the client; IP never counts."""

        if payload.branch_id is None and payload.client_location is None:
            return LocationContext()
        coords = payload.client_location
        resolver = OfferResolver(self.campaigns, self.catalog, self.locator)
        resolved = await resolver.build_context(
            branch_id=payload.branch_id,
            latitude=coords.latitude if coords else None,
            longitude=coords.longitude if coords else None,
            use_ip_lookup=False,
        )
        return resolved.context

    async def _price_lines(
        self, payload: OrderCreate, ctx: LocationContext, now: datetime
    ) -> tuple[list[OrderLine], Decimal]:
        quantities: dict[int, int] = {}
        for line in payload.items:
            quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity
        products = await self.catalog.products(quantities)
        for product_id in quantities:
            product = products.get(product_id)
            if product is None:
                raise NotFoundError(f"Product not found: {product_id}")
            if not product.is_active:
                raise OrderValidationError(f"Product is no longer available: {product.title}")

        live = active_campaigns(await self.campaigns.live_campaigns(now), now, ctx)
        ordered = [products[pid] for pid in quantities]
        lines: list[OrderLine] = []
        subtotal = Decimal("0")
        for product, priced in zip(ordered, price_products(ordered, live)):
            quantity = quantities[product.id]
            line_total = money(priced.effective_price * quantity)
            subtotal += line_total
            lines.append(
                OrderLine(
                    product_id=product.id,
                    title=product.title,
                    price=priced.original_price,
                    offer_price=priced.effective_price if priced.has_offer else None,
                    quantity=quantity,
                    subtotal=line_total,
                    image=product.image,
                )
            )
        return lines, money(subtotal)

    @staticmethod
    def _verify_totals(payload: OrderCreate, subtotal: Decimal) -> None:
        tolerance = Decimal(str(settings.PRICE_TOLERANCE))
        if abs(subtotal - payload.subtotal) > tolerance:
            raise OrderIntegrityError(
                f"subtotal mismatch: computed={subtotal} submitted={payload.subtotal}"
            )
        if abs(subtotal + payload.shipping - payload.total) > tolerance:
            raise OrderIntegrityError(
                f"total mismatch: computed={subtotal + payload.shipping} submitted={payload.total}"
            )

    async def create_order(
        self,
        customer: Actor,
        payload: OrderCreate,
        now: datetime,
        client_ip: Optional[str] = None,
    ) -> PlacedOrder:
        """Reprice, verify, assign and persist an order as one unit of work."""

        if customer.role != "customer":
            raise PermissionDeniedError("Only customers can place orders")
        assignment = await self.assign_branch(payload, client_ip)
        ctx = await self._pricing_context(payload)
        address = payload.shipping_address.model_dump(exclude_none=True)

        async def unit() -> PlacedOrder:
            lines, subtotal = await self._price_lines(payload, ctx, now)
            self._verify_totals(payload, subtotal)
            order_number = await self.orders.next_order_number()
            placed = await self.orders.add_order(
                OrderDraft(
                    order_number=order_number,
                    customer_code=customer.user_code,
                    branch_id=assignment.branch.id if assignment.branch else None,
                    shipping_address=address,
                    payment_method=payload.payment_method,
                    lines=tuple(lines),
                    subtotal=subtotal,
                    shipping=money(payload.shipping),
                    total=money(subtotal + payload.shipping),
                    notes=payload.notes,
                    customer_ip=client_ip,
                    customer_coordinates=assignment.coordinates,
                    location_source=assignment.source,
                )
            )
            if payload.save_info:
                label = "Company Address" if payload.shipping_address.vat_registered else "Home Address"
                await self.orders.save_address(customer.user_code, label, address)
            return placed

        placed = await self.orders.atomic(unit, label="order_create")
        logger.bind(
            order_number=placed.order_number,
            branch_id=placed.branch_id,
            lines=len(placed.lines),
            total=str(placed.total),
            location_source=assignment.source,
        ).info("order_created")
        return placed

    async def get_order(self, viewer: Actor, order_number: str) -> PlacedOrder:
        order = await self.orders.get_order(order_number)
        if order is None:
            raise NotFoundError("Order not found")
        if viewer.role == "admin":
            return order
        if viewer.role == "branch" and viewer.branch_id is not None and order.branch_id == viewer.branch_id:
            return order
        if viewer.role == "customer" and order.customer_code == viewer.user_code:
            return order
        raise NotFoundError("Order not found")

    async def customer_orders(
        self, customer: Actor, *, page: int = 1, limit: int = 10, status: Optional[str] = None
    ) -> tuple[list[PlacedOrder], int]:
        return await self.orders.customer_orders(
            customer.user_code, status=status, limit=limit, offset=(page - 1) * limit
        )
