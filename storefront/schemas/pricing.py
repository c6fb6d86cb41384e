"""Schemas for priced products."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from storefront.services.domain import ProductSnapshot
from storefront.services.pricing import PricedProduct


class LocationQuery(BaseModel):
    branch_id: Optional[int] = None
    city: Optional[str] = Field(default=None, max_length=120)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)

    @model_validator(mode="after")
    def _both_coordinates(self) -> "LocationQuery":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be supplied together")
        return self


class PricingRequest(LocationQuery):
    product_ids: List[int] = Field(..., min_length=1, max_length=200)


class AppliedDiscountOut(BaseModel):
    campaign_id: int
    title: str
    apply_mode: str
    discount_amount: float
    discount_percent: float


class PricedProductOut(BaseModel):
    product_id: int
    title: Optional[str] = None
    original_price: float
    effective_price: float
    has_offer: bool
    discount_amount: Optional[float] = None
    discount_percent: Optional[float] = None
    contributing_campaigns: List[AppliedDiscountOut] = Field(default_factory=list)

    @classmethod
    def from_domain(
        cls, priced: PricedProduct, product: Optional[ProductSnapshot] = None
    ) -> "PricedProductOut":
        return cls(
            product_id=priced.product_id,
            title=product.title if product else None,
            original_price=float(priced.original_price),
            effective_price=float(priced.effective_price),
            has_offer=priced.has_offer,
            discount_amount=float(priced.discount_amount) if priced.discount_amount is not None else None,
            discount_percent=float(priced.discount_percent) if priced.discount_percent is not None else None,
            contributing_campaigns=[
                AppliedDiscountOut(
                    campaign_id=a.campaign_id,
                    title=a.title,
                    apply_mode=a.apply_mode,
                    discount_amount=float(a.discount_amount),
                    discount_percent=float(a.discount_percent),
                )
                for a in priced.contributing_campaigns
            ],
        )


class ProductOut(PricedProductOut):
    model_number: Optional[str] = None
    category_id: Optional[int] = None
    image: Optional[str] = None

    @classmethod
    def from_pair(cls, product: ProductSnapshot, priced: PricedProduct) -> "ProductOut":
        base = PricedProductOut.from_domain(priced, product)
        return cls(
            **base.model_dump(),
            model_number=product.model_number,
            category_id=product.category_id,
            image=product.image,
        )
