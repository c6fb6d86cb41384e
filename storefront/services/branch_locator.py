"""Nearest-branch resolution with a spatial primary and a haversine fallback."""

from __future__ import annotations

from typing import Iterable, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from storefront.services.domain import BranchPoint
from storefront.services.geo import distance_km
from storefront.stores.base import BranchIndex


def nearest_by_scan(
    branches: Iterable[BranchPoint],
    longitude: float,
    latitude: float,
    max_distance_km: Optional[float] = None,
) -> Optional[BranchPoint]:
    """Closest active branch by haversine distance, ties going to the lowest id."""

    best: Optional[BranchPoint] = None
    best_km = float("inf")
    for branch in branches:
        if not branch.is_active:
            continue
        km = distance_km(latitude, longitude, branch.latitude, branch.longitude)
        if max_distance_km is not None and km > max_distance_km:
            continue
        if km < best_km or (km == best_km and best is not None and branch.id < best.id):
            best, best_km = branch, km
    return best


class BranchLocator:
    def __init__(self, index: BranchIndex):
        self._index = index

    async def nearest(
        self, longitude: float, latitude: float, max_distance_km: float
    ) -> Optional[BranchPoint]:
        """Nearest active branch within ``max_distance_km``, or ``None``.

        The spatial query runs first; when it errors or finds nothing the
        active branches are scanned directly with the same distance function.
        """

        try:
            found = await self._index.nearest(longitude, latitude, max_distance_km)
        except SQLAlchemyError as exc:
            logger.bind(error=str(exc)).warning("branch_spatial_query_failed")
            found = None
        if found is not None:
            return found
        branches = await self._index.active_branches()
        branch = nearest_by_scan(branches, longitude, latitude, max_distance_km)
        if branch is not None:
            logger.bind(branch_id=branch.id).info("branch_resolved_by_scan")
        return branch

    async def within(
        self, longitude: float, latitude: float, radius_km: float
    ) -> list[BranchPoint]:
        return await self._index.within(longitude, latitude, radius_km)

    async def get(self, branch_id: int) -> Optional[BranchPoint]:
        return await self._index.get(branch_id)
