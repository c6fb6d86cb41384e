"""Immutable campaign, catalog, branch and order values used by the services.

ORM rows never reach the engine; store adapters convert them into these
types first. Pricing modes are a closed union so a bulk-percent campaign
cannot also carry a flat amount.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from storefront.services.geo import distance_km


@dataclass(frozen=True, slots=True)
class PerItem:
    kind = "perItem"


@dataclass(frozen=True, slots=True)
class BulkPercent:
    percent: Decimal
    kind = "bulkPercent"


@dataclass(frozen=True, slots=True)
class BulkAmount:
    amount: Decimal
    kind = "bulkAmount"


PricingMode = Union[PerItem, BulkPercent, BulkAmount]


@dataclass(frozen=True, slots=True)
class CircleFence:
    longitude: float
    latitude: float
    radius_m: float

    def contains(self, longitude: float, latitude: float) -> bool:
        return distance_km(latitude, longitude, self.latitude, self.longitude) * 1000 <= self.radius_m


@dataclass(frozen=True, slots=True)
class PolygonFence:
    """Outer ring of ``(lng, lat)`` vertices; holes are not supported."""

    ring: tuple[tuple[float, float], ...]

    def contains(self, longitude: float, latitude: float) -> bool:
        inside = False
        count = len(self.ring)
        if count < 3:
            return False
        j = count - 1
        for i in range(count):
            xi, yi = self.ring[i]
            xj, yj = self.ring[j]
            if (yi > latitude) != (yj > latitude):
                cross = (xj - xi) * (latitude - yi) / (yj - yi) + xi
                if longitude < cross:
                    inside = not inside
            j = i
        return inside


Geofence = Union[CircleFence, PolygonFence]


@dataclass(frozen=True, slots=True)
class CampaignItem:
    product_id: int
    offer_price: Optional[Decimal] = None
    percent: Optional[Decimal] = None


@dataclass(frozen=True, slots=True)
class Campaign:
    id: int
    title: str
    mode: PricingMode
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: bool = True
    items: tuple[CampaignItem, ...] = ()
    product_ids: frozenset[int] = frozenset()
    category_ids: frozenset[int] = frozenset()
    branch_ids: frozenset[int] = frozenset()
    cities: frozenset[str] = frozenset()
    geofence: Optional[Geofence] = None
    priority: int = 0
    stackable: bool = False
    branch_id: Optional[int] = None  # legacy single-branch scope
    created_by: str = ""
    created_role: str = "admin"
    updated_at: Optional[datetime] = None

    def item_for(self, product_id: int) -> Optional[CampaignItem]:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    @property
    def item_product_ids(self) -> frozenset[int]:
        return frozenset(item.product_id for item in self.items)

    @property
    def claimed_product_ids(self) -> frozenset[int]:
        """Products this campaign explicitly names, via item overrides or product ids."""

        return self.item_product_ids | self.product_ids

    @property
    def is_unrestricted(self) -> bool:
        return (
            not self.branch_ids
            and self.branch_id is None
            and not self.cities
            and self.geofence is None
        )


@dataclass(frozen=True, slots=True)
class ProductSnapshot:
    id: int
    title: str
    price: Decimal
    category_id: Optional[int] = None
    is_active: bool = True
    model_number: Optional[str] = None
    image: Optional[str] = None


@dataclass(frozen=True, slots=True)
class LocationContext:
    """Where a request comes from; any subset may be known."""

    branch_id: Optional[int] = None
    city: Optional[str] = None
    coordinates: Optional[tuple[float, float]] = None  # (lng, lat)

    @property
    def is_empty(self) -> bool:
        return self.branch_id is None and not self.city and self.coordinates is None


@dataclass(frozen=True, slots=True)
class BranchPoint:
    id: int
    name: str
    longitude: float
    latitude: float
    city: Optional[str] = None
    is_active: bool = True
    address_text: Optional[str] = None
    phone: Optional[str] = None



@dataclass(frozen=True, slots=True)
class OrderLine:
    """Frozen snapshot of a purchased product."""

    product_id: int
    title: str
    price: Decimal
    offer_price: Optional[Decimal]
    quantity: int
    subtotal: Decimal
    image: Optional[str] = None


@dataclass(frozen=True, slots=True)
class OrderDraft:
    order_number: str
    customer_code: str
    branch_id: Optional[int]
    shipping_address: dict
    payment_method: str
    lines: tuple[OrderLine, ...]
    subtotal: Decimal
    shipping: Decimal
    total: Decimal
    notes: Optional[str] = None
    customer_ip: Optional[str] = None
    customer_coordinates: Optional[tuple[float, float]] = None  # (lng, lat)
    location_source: str = "none"  # client | ip | none


@dataclass(frozen=True, slots=True)
class PlacedOrder:
    id: int
    order_number: str
    customer_code: str
    branch_id: Optional[int]
    shipping_address: dict
    payment_method: str
    lines: tuple[OrderLine, ...]
    subtotal: Decimal
    shipping: Decimal
    total: Decimal
    status: str
    payment_status: str
    created_at: datetime
    notes: Optional[str] = None
    location_source: str = "none"


@dataclass(frozen=True, slots=True)
class Actor:
    """The authenticated caller as the services see it."""

    user_code: str
    role: str  # admin | branch | customer
    branch_id: Optional[int] = None
    remote_addr: Optional[str] = None


def geofence_from_json(data: Optional[dict]) -> Optional[Geofence]:
    """Parse the stored GeoJSON-ish geofence; unknown shapes mean no fence."""

    if not data:
        return None
    kind = data.get("type")
    coordinates = data.get("coordinates") or []
    if kind == "Point" and data.get("radiusMeters") and len(coordinates) == 2:
        lng, lat = coordinates
        return CircleFence(longitude=float(lng), latitude=float(lat), radius_m=float(data["radiusMeters"]))
    if kind == "Polygon" and coordinates and coordinates[0]:
        ring = tuple((float(lng), float(lat)) for lng, lat in coordinates[0])
        return PolygonFence(ring=ring)
    return None


def geofence_to_json(fence: Optional[Geofence]) -> Optional[dict]:
    if fence is None:
        return None
    if isinstance(fence, CircleFence):
        return {
            "type": "Point",
            "coordinates": [fence.longitude, fence.latitude],
            "radiusMeters": fence.radius_m,
        }
    return {"type": "Polygon", "coordinates": [[list(point) for point in fence.ring]]}
