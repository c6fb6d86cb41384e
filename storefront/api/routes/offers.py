"""Offer campaign endpoints: public storefront listings and staff administration."""

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from storefront.core.clock import Clock
from storefront.core.deps import (
    get_campaign_admin,
    get_clock,
    get_offer_resolver,
    require_roles,
)
from storefront.core.rate_limit import get_client_ip
from storefront.schemas.offer import (
    CampaignCreate,
    CampaignExtend,
    CampaignOut,
    CampaignStatus,
    CampaignUpdate,
    NearbyOffersOut,
    ResolutionMetadata,
    ResolvedOffersOut,
)
from storefront.services.campaign_admin import CampaignAdmin
from storefront.services.domain import Actor
from storefront.services.offer_resolution import OfferResolver

router = APIRouter(prefix="/offers", tags=["offers"])

staff = require_roles("admin", "branch")


def _parse_ids(raw: Optional[str]) -> List[int]:
    if not raw:
        return []
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="cart_product_ids must be a comma separated list of integers",
        )


@router.get("/public/active", response_model=List[CampaignOut])
async def public_active_offers(
    resolver: OfferResolver = Depends(get_offer_resolver),
    clock: Clock = Depends(get_clock),
):
    campaigns = await resolver.public_active(clock())
    return [CampaignOut.from_domain(c) for c in campaigns]


@router.get("/public/resolve", response_model=ResolvedOffersOut)
async def resolve_relevant_offers(
    request: Request,
    lat: Optional[float] = Query(default=None, ge=-90, le=90),
    lng: Optional[float] = Query(default=None, ge=-180, le=180),
    city_name: Optional[str] = Query(default=None, max_length=120),
    branch_id: Optional[int] = None,
    cart_product_ids: Optional[str] = None,
    resolver: OfferResolver = Depends(get_offer_resolver),
    clock: Clock = Depends(get_clock),
):
    """Offers for the caller's location, ranked and de-duplicated by stacking rules."""

    resolved = await resolver.build_context(
        branch_id=branch_id,
        city=city_name.strip() if city_name else None,
        latitude=lat,
        longitude=lng,
        client_ip=get_client_ip(request),
    )
    result = await resolver.resolve_offers(resolved, clock(), _parse_ids(cart_product_ids))
    ctx = resolved.context
    return ResolvedOffersOut(
        offers=[CampaignOut.from_domain(c) for c in result.offers],
        metadata=ResolutionMetadata(
            user_branch_id=ctx.branch_id,
            user_city=ctx.city,
            user_coordinates=list(ctx.coordinates) if ctx.coordinates else None,
            location_source=resolved.source,
            total_offers_found=result.total_offers_found,
            applied_offers_count=len(result.offers),
            has_location_context=not ctx.is_empty,
            cart_products_considered=result.cart_products_considered,
        ),
    )


@router.get("/public/nearby", response_model=NearbyOffersOut)
async def location_based_offers(
    lat: Optional[float] = Query(default=None, ge=-90, le=90),
    lng: Optional[float] = Query(default=None, ge=-180, le=180),
    resolver: OfferResolver = Depends(get_offer_resolver),
    clock: Clock = Depends(get_clock),
):
    campaigns, branch = await resolver.nearby(clock(), lat, lng)
    return NearbyOffersOut(
        offers=[CampaignOut.from_domain(c) for c in campaigns],
        nearest_branch_id=branch.id if branch else None,
        nearest_branch_name=branch.name if branch else None,
    )


@router.get("/public/{campaign_id}", response_model=CampaignOut)
async def public_offer(
    campaign_id: int,
    resolver: OfferResolver = Depends(get_offer_resolver),
    clock: Clock = Depends(get_clock),
):
    return CampaignOut.from_domain(await resolver.public_campaign(campaign_id, clock()))


@router.get("", response_model=List[CampaignOut])
async def list_offers(
    scope: Optional[Literal["global", "branch"]] = None,
    is_active: Optional[bool] = None,
    actor: Actor = Depends(staff),
    admin: CampaignAdmin = Depends(get_campaign_admin),
):
    campaigns = await admin.list_campaigns(actor, scope=scope, is_active=is_active)
    return [CampaignOut.from_domain(c) for c in campaigns]


@router.get("/{campaign_id}", response_model=CampaignOut)
async def get_offer(
    campaign_id: int,
    actor: Actor = Depends(staff),
    admin: CampaignAdmin = Depends(get_campaign_admin),
):
    return CampaignOut.from_domain(await admin.get(actor, campaign_id))


@router.post("", response_model=CampaignOut, status_code=status.HTTP_201_CREATED)
async def create_offer(
    payload: CampaignCreate,
    actor: Actor = Depends(staff),
    admin: CampaignAdmin = Depends(get_campaign_admin),
    clock: Clock = Depends(get_clock),
):
    return CampaignOut.from_domain(await admin.create(actor, payload, clock()))


@router.patch("/{campaign_id}", response_model=CampaignOut)
async def update_offer(
    campaign_id: int,
    payload: CampaignUpdate,
    actor: Actor = Depends(staff),
    admin: CampaignAdmin = Depends(get_campaign_admin),
    clock: Clock = Depends(get_clock),
):
    return CampaignOut.from_domain(await admin.update(actor, campaign_id, payload, clock()))


@router.patch("/{campaign_id}/extend", response_model=CampaignOut)
async def extend_offer(
    campaign_id: int,
    payload: CampaignExtend,
    actor: Actor = Depends(staff),
    admin: CampaignAdmin = Depends(get_campaign_admin),
    clock: Clock = Depends(get_clock),
):
    return CampaignOut.from_domain(
        await admin.extend(actor, campaign_id, payload.ends_at, clock())
    )


@router.patch("/{campaign_id}/status", response_model=CampaignOut)
async def toggle_offer_status(
    campaign_id: int,
    payload: CampaignStatus,
    actor: Actor = Depends(staff),
    admin: CampaignAdmin = Depends(get_campaign_admin),
    clock: Clock = Depends(get_clock),
):
    return CampaignOut.from_domain(
        await admin.set_status(actor, campaign_id, payload.is_active, clock())
    )


@router.delete("/{campaign_id}")
async def delete_offer(
    campaign_id: int,
    actor: Actor = Depends(staff),
    admin: CampaignAdmin = Depends(get_campaign_admin),
):
    await admin.delete(actor, campaign_id)
    return {"ok": True, "message": "Offer campaign deleted successfully"}
