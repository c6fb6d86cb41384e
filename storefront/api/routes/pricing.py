"""Catalog pricing endpoints."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from storefront.core.clock import Clock
from storefront.core.deps import get_catalog, get_clock, get_offer_resolver
from storefront.schemas.pricing import PricedProductOut, PricingRequest, ProductOut
from storefront.services.offer_resolution import OfferResolver

router = APIRouter(tags=["pricing"])


@router.post("/pricing/products", response_model=List[PricedProductOut])
async def price_products(
    payload: PricingRequest,
    resolver: OfferResolver = Depends(get_offer_resolver),
    clock: Clock = Depends(get_clock),
):
    """Effective prices for the given products; unknown ids are left out."""

    resolved = await resolver.build_context(
        branch_id=payload.branch_id,
        city=payload.city,
        latitude=payload.latitude,
        longitude=payload.longitude,
        use_ip_lookup=False,
    )
    pairs = await resolver.price_product_ids(payload.product_ids, resolved.context, clock())
    return [PricedProductOut.from_domain(priced, product) for product, priced in pairs]


@router.get("/products", response_model=List[ProductOut])
async def list_products(
    category_id: Optional[int] = None,
    branch_id: Optional[int] = None,
    city: Optional[str] = Query(default=None, max_length=120),
    lat: Optional[float] = Query(default=None, ge=-90, le=90),
    lng: Optional[float] = Query(default=None, ge=-180, le=180),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    catalog=Depends(get_catalog),
    resolver: OfferResolver = Depends(get_offer_resolver),
    clock: Clock = Depends(get_clock),
):
    products = await catalog.active_products(category_id=category_id, limit=limit, offset=offset)
    resolved = await resolver.build_context(
        branch_id=branch_id, city=city, latitude=lat, longitude=lng, use_ip_lookup=False
    )
    priced = await resolver.price_products(products, resolved.context, clock())
    return [ProductOut.from_pair(product, p) for product, p in zip(products, priced)]
