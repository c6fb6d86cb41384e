from typing import Optional

from pydantic import BaseModel

from storefront.services.domain import BranchPoint


class BranchOut(BaseModel):
    id: int
    name: str
    city: Optional[str] = None
    latitude: float
    longitude: float
    address_text: Optional[str] = None
    phone: Optional[str] = None
    distance_km: Optional[float] = None

    @classmethod
    def from_domain(cls, branch: BranchPoint, distance_km: Optional[float] = None) -> "BranchOut":
        return cls(
            id=branch.id,
            name=branch.name,
            city=branch.city,
            latitude=branch.latitude,
            longitude=branch.longitude,
            address_text=branch.address_text,
            phone=branch.phone,
            distance_km=round(distance_km, 3) if distance_km is not None else None,
        )


class NearestBranchOut(BaseModel):
    branch: Optional[BranchOut] = None
    max_distance_km: float
