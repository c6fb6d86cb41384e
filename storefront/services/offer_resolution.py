"""Read-side offer surfaces: location context, listings, resolution and pricing."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from storefront.core.config import settings
from storefront.core.errors import NotFoundError
from storefront.services.branch_locator import BranchLocator
from storefront.services.domain import BranchPoint, Campaign, LocationContext, ProductSnapshot
from storefront.services.geo import GeoResolver
from storefront.services.pricing import PricedProduct, price_products
from storefront.services.stacking import rank_campaigns, resolve_stacking
from storefront.services.targeting import active_campaigns, is_live
from storefront.stores.base import CampaignStore, Catalog


@dataclass(frozen=True, slots=True)
class ResolvedContext:
    context: LocationContext
    source: str  # query | client | ip | none
    branch: Optional[BranchPoint] = None


@dataclass(frozen=True, slots=True)
class ResolvedOffers:
    offers: list[Campaign]
    context: ResolvedContext
    total_offers_found: int
    cart_products_considered: int


class OfferResolver:
    def __init__(
        self,
        campaigns: CampaignStore,
        catalog: Catalog,
        locator: BranchLocator,
        geo: Optional[GeoResolver] = None,
    ):
        self.campaigns = campaigns
        self.catalog = catalog
        self.locator = locator
        self.geo = geo

    async def _branch(self, branch_id: int) -> Optional[BranchPoint]:
        try:
            return await self.locator.get(branch_id)
        except SQLAlchemyError as exc:
            logger.bind(branch_id=branch_id, error=str(exc)).warning("branch_lookup_failed")
            return None

    async def _nearest(self, lng: float, lat: float, max_km: float) -> Optional[BranchPoint]:
        try:
            return await self.locator.nearest(lng, lat, max_km)
        except SQLAlchemyError as exc:
            logger.bind(error=str(exc)).warning("branch_lookup_failed")
            return None

    async def build_context(
        self,
        *,
        branch_id: Optional[int] = None,
        city: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        client_ip: Optional[str] = None,
        use_ip_lookup: Optional[bool] = None,
    ) -> ResolvedContext:
        """Derive the requester's location from explicit params, then coordinates, then IP.

        Lookup failures degrade to a context with fewer known fields; they
        never fail the request.
        """

        coordinates = (longitude, latitude) if latitude is not None and longitude is not None else None
        source = "none"
        branch: Optional[BranchPoint] = None
        if branch_id is not None or city:
            source = "query"
        elif coordinates is not None:
            source = "client"

        if branch_id is None and city is None and coordinates is None:
            lookup = settings.RESOLVE_USE_IP_LOOKUP if use_ip_lookup is None else use_ip_lookup
            if lookup and self.geo is not None and client_ip:
                location = await self.geo.resolve_from_ip(client_ip)
                if location is not None:
                    coordinates = (location.longitude, location.latitude)
                    city = location.city
                    source = "ip"
                    branch = await self._nearest(
                        location.longitude, location.latitude, settings.IP_BRANCH_MAX_DISTANCE_KM
                    )
        elif branch_id is None and coordinates is not None:
            branch = await self._nearest(
                coordinates[0], coordinates[1], settings.BRANCH_SEARCH_RADIUS_KM
            )

        if branch_id is not None:
            branch = await self._branch(branch_id)
            if branch is not None and coordinates is None:
                coordinates = (branch.longitude, branch.latitude)
        if branch is not None and not city:
            city = branch.city

        ctx = LocationContext(
            branch_id=branch_id if branch_id is not None else (branch.id if branch else None),
            city=city or None,
            coordinates=coordinates,
        )
        logger.bind(
            branch_id=ctx.branch_id, city=ctx.city, source=source
        ).debug("location_context_resolved")
        return ResolvedContext(context=ctx, source=source, branch=branch)

    async def _with_active_coverage(self, campaigns: Sequence[Campaign]) -> list[Campaign]:
        """Drop campaigns whose named products are all inactive or missing.

        Category-only campaigns stay; campaigns covering nothing at all go.
        """

        claimed: set[int] = set()
        for campaign in campaigns:
            claimed |= campaign.claimed_product_ids
        products = await self.catalog.products(claimed) if claimed else {}
        visible = []
        for campaign in campaigns:
            ids = campaign.claimed_product_ids
            if ids:
                if any(products.get(pid) is not None and products[pid].is_active for pid in ids):
                    visible.append(campaign)
            elif campaign.category_ids:
                visible.append(campaign)
        return visible

    async def public_active(self, now: datetime) -> list[Campaign]:
        """Every live campaign with something purchasable, newest first."""

        live = await self.campaigns.live_campaigns(now)
        live = [c for c in live if is_live(c, now)]
        return sorted(await self._with_active_coverage(live), key=lambda c: c.id, reverse=True)

    async def public_campaign(self, campaign_id: int, now: datetime) -> Campaign:
        campaign = await self.campaigns.get(campaign_id)
        if campaign is None or not is_live(campaign, now):
            raise NotFoundError("Offer not found or not active")
        return campaign

    async def nearby(
        self, now: datetime, latitude: Optional[float], longitude: Optional[float]
    ) -> tuple[list[Campaign], Optional[BranchPoint]]:
        """Global campaigns plus those of the nearest branch around the caller."""

        branch = None
        if latitude is not None and longitude is not None:
            branch = await self._nearest(longitude, latitude, settings.BRANCH_SEARCH_RADIUS_KM)
        ctx = LocationContext(branch_id=branch.id if branch else None)
        live = active_campaigns(await self.campaigns.live_campaigns(now), now, ctx)
        visible = await self._with_active_coverage(live)
        return sorted(visible, key=lambda c: c.id, reverse=True), branch

    async def resolve_offers(
        self,
        resolved: ResolvedContext,
        now: datetime,
        cart_product_ids: Optional[Iterable[int]] = None,
    ) -> ResolvedOffers:
        cart: list[ProductSnapshot] = []
        if cart_product_ids:
            found = await self.catalog.products(cart_product_ids)
            cart = list(found.values())
        candidates = active_campaigns(
            await self.campaigns.live_campaigns(now), now, resolved.context
        )
        visible = await self._with_active_coverage(candidates)
        applied = resolve_stacking(rank_campaigns(visible, cart or None))
        logger.bind(
            found=len(visible),
            applied=len(applied),
            cart=len(cart),
            source=resolved.source,
        ).info("offers_resolved")
        return ResolvedOffers(
            offers=applied,
            context=resolved,
            total_offers_found=len(visible),
            cart_products_considered=len(cart),
        )

    async def price_products(
        self, products: Sequence[ProductSnapshot], ctx: LocationContext, now: datetime
    ) -> list[PricedProduct]:
        live = active_campaigns(await self.campaigns.live_campaigns(now), now, ctx)
        return price_products(products, live)

    async def price_product_ids(
        self, product_ids: Sequence[int], ctx: LocationContext, now: datetime
    ) -> list[tuple[ProductSnapshot, PricedProduct]]:
        """Price the known products among ``product_ids``; unknown ids are skipped."""

        found = await self.catalog.products(product_ids)
        products = [found[pid] for pid in dict.fromkeys(product_ids) if pid in found]
        priced = await self.price_products(products, ctx, now)
        return list(zip(products, priced))
