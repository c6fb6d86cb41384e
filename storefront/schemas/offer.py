"""Pydantic schemas for offer campaigns."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from storefront.services.domain import (
    BulkAmount,
    BulkPercent,
    Campaign,
    CircleFence,
    Geofence,
    PerItem,
    PolygonFence,
    PricingMode,
    geofence_to_json,
)


class PerItemPricing(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mode: Literal["perItem"] = "perItem"

    def to_domain(self) -> PricingMode:
        return PerItem()


class BulkPercentPricing(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mode: Literal["bulkPercent"] = "bulkPercent"
    percent: Decimal = Field(..., gt=Decimal("0"), le=Decimal("100"))

    def to_domain(self) -> PricingMode:
        return BulkPercent(percent=self.percent)


class BulkAmountPricing(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mode: Literal["bulkAmount"] = "bulkAmount"
    amount: Decimal = Field(..., gt=Decimal("0"))

    def to_domain(self) -> PricingMode:
        return BulkAmount(amount=self.amount)


Pricing = Annotated[
    Union[PerItemPricing, BulkPercentPricing, BulkAmountPricing],
    Field(discriminator="mode"),
]


class CircleFenceIn(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    type: Literal["Point"]
    coordinates: List[float] = Field(..., min_length=2, max_length=2)
    radius_meters: float = Field(..., gt=0, alias="radiusMeters")

    @field_validator("coordinates")
    @classmethod
    def _check_point(cls, value: List[float]) -> List[float]:
        lng, lat = value
        if not -180 <= lng <= 180 or not -90 <= lat <= 90:
            raise ValueError("Coordinates must be [longitude, latitude]")
        return value

    def to_domain(self) -> Geofence:
        lng, lat = self.coordinates
        return CircleFence(longitude=lng, latitude=lat, radius_m=self.radius_meters)


class PolygonFenceIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["Polygon"]
    coordinates: List[List[List[float]]] = Field(..., min_length=1)

    @field_validator("coordinates")
    @classmethod
    def _check_ring(cls, value: List[List[List[float]]]) -> List[List[List[float]]]:
        ring = value[0]
        if len(ring) < 3 or any(len(point) != 2 for point in ring):
            raise ValueError("Polygon needs at least three [longitude, latitude] points")
        return value

    def to_domain(self) -> Geofence:
        return PolygonFence(ring=tuple((p[0], p[1]) for p in self.coordinates[0]))


GeofenceIn = Annotated[Union[CircleFenceIn, PolygonFenceIn], Field(discriminator="type")]


class CampaignItemIn(BaseModel):
    product_id: int = Field(..., ge=1)
    offer_price: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    percent: Optional[Decimal] = Field(default=None, ge=Decimal("0"), le=Decimal("100"))


def _clean_cities(value):
    if value is None:
        return value
    return [city.strip() for city in value if isinstance(city, str) and city.strip()]


class CampaignCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=100)
    pricing: Pricing
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    items: List[CampaignItemIn] = Field(default_factory=list)
    product_ids: List[int] = Field(default_factory=list)
    category_ids: List[int] = Field(default_factory=list)
    branch_ids: List[int] = Field(default_factory=list)
    cities: List[str] = Field(default_factory=list)
    geo: Optional[GeofenceIn] = None
    priority: int = 0
    stackable: bool = False
    branch_id: Optional[int] = None

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("cities", mode="before")
    @classmethod
    def _strip_cities(cls, value):
        return _clean_cities(value)

    @model_validator(mode="after")
    def _check_window(self) -> "CampaignCreate":
        if self.starts_at and self.ends_at and self.ends_at < self.starts_at:
            raise ValueError("ends_at must not be before starts_at")
        product_ids = [item.product_id for item in self.items]
        if len(product_ids) != len(set(product_ids)):
            raise ValueError("Each product may appear only once in items")
        return self


class CampaignUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value."""

    title: Optional[str] = Field(default=None, min_length=3, max_length=100)
    pricing: Optional[Pricing] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: Optional[bool] = None
    items: Optional[List[CampaignItemIn]] = None
    product_ids: Optional[List[int]] = None
    category_ids: Optional[List[int]] = None
    branch_ids: Optional[List[int]] = None
    cities: Optional[List[str]] = None
    geo: Optional[GeofenceIn] = None
    priority: Optional[int] = None
    stackable: Optional[bool] = None
    branch_id: Optional[int] = None
    expected_updated_at: Optional[datetime] = None

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("cities", mode="before")
    @classmethod
    def _strip_cities(cls, value):
        return _clean_cities(value)


class CampaignExtend(BaseModel):
    ends_at: datetime


class CampaignStatus(BaseModel):
    is_active: bool


class CampaignItemOut(BaseModel):
    product_id: int
    offer_price: Optional[float] = None
    percent: Optional[float] = None


class CampaignOut(BaseModel):
    id: int
    title: str
    apply_mode: str
    bulk_percent: Optional[float] = None
    bulk_amount: Optional[float] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: bool
    items: List[CampaignItemOut]
    product_ids: List[int]
    category_ids: List[int]
    branch_ids: List[int]
    cities: List[str]
    geo: Optional[dict] = None
    priority: int
    stackable: bool
    branch_id: Optional[int] = None
    created_by: str
    created_role: str
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, campaign: Campaign) -> "CampaignOut":
        mode = campaign.mode
        return cls(
            id=campaign.id,
            title=campaign.title,
            apply_mode=mode.kind,
            bulk_percent=float(mode.percent) if isinstance(mode, BulkPercent) else None,
            bulk_amount=float(mode.amount) if isinstance(mode, BulkAmount) else None,
            starts_at=campaign.starts_at,
            ends_at=campaign.ends_at,
            is_active=campaign.is_active,
            items=[
                CampaignItemOut(
                    product_id=item.product_id,
                    offer_price=float(item.offer_price) if item.offer_price is not None else None,
                    percent=float(item.percent) if item.percent is not None else None,
                )
                for item in campaign.items
            ],
            product_ids=sorted(campaign.product_ids),
            category_ids=sorted(campaign.category_ids),
            branch_ids=sorted(campaign.branch_ids),
            cities=sorted(campaign.cities),
            geo=geofence_to_json(campaign.geofence),
            priority=campaign.priority,
            stackable=campaign.stackable,
            branch_id=campaign.branch_id,
            created_by=campaign.created_by,
            created_role=campaign.created_role,
            updated_at=campaign.updated_at,
        )


class ResolutionMetadata(BaseModel):
    user_branch_id: Optional[int] = None
    user_city: Optional[str] = None
    user_coordinates: Optional[List[float]] = None
    location_source: str
    total_offers_found: int
    applied_offers_count: int
    has_location_context: bool
    cart_products_considered: int


class ResolvedOffersOut(BaseModel):
    offers: List[CampaignOut]
    metadata: ResolutionMetadata


class NearbyOffersOut(BaseModel):
    offers: List[CampaignOut]
    nearest_branch_id: Optional[int] = None
    nearest_branch_name: Optional[str] = None
