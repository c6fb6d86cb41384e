from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from storefront.core.config import settings
from storefront.core.deps import get_branch_locator
from storefront.schemas.branch import BranchOut, NearestBranchOut
from storefront.services.branch_locator import BranchLocator
from storefront.services.geo import distance_km

router = APIRouter(prefix="/branches", tags=["branches"])


@router.get("/nearest", response_model=NearestBranchOut)
async def nearest_branch(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    max_distance_km: Optional[float] = Query(default=None, gt=0, le=20000),
    locator: BranchLocator = Depends(get_branch_locator),
):
    radius = max_distance_km or settings.BRANCH_SEARCH_RADIUS_KM
    branch = await locator.nearest(lng, lat, radius)
    if branch is None:
        return NearestBranchOut(branch=None, max_distance_km=radius)
    km = distance_km(lat, lng, branch.latitude, branch.longitude)
    return NearestBranchOut(branch=BranchOut.from_domain(branch, km), max_distance_km=radius)


@router.get("/within", response_model=List[BranchOut])
async def branches_within(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(..., gt=0, le=20000),
    locator: BranchLocator = Depends(get_branch_locator),
):
    branches = await locator.within(lng, lat, radius_km)
    return [
        BranchOut.from_domain(b, distance_km(lat, lng, b.latitude, b.longitude)) for b in branches
    ]
