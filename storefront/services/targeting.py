"""Temporal and location targeting for campaigns.

Each targeting dimension is an independent ``admits`` predicate; a campaign
is visible when any of them admits the requester.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable

from storefront.services.domain import Campaign, LocationContext

Admits = Callable[[Campaign, LocationContext], bool]


def is_live(campaign: Campaign, now: datetime) -> bool:
    """Active flag set and ``now`` inside the (inclusive, open-ended) window."""

    if not campaign.is_active:
        return False
    if campaign.starts_at is not None and campaign.starts_at > now:
        return False
    if campaign.ends_at is not None and campaign.ends_at < now:
        return False
    return True


def admits_branch(campaign: Campaign, ctx: LocationContext) -> bool:
    if ctx.branch_id is None:
        return False
    return ctx.branch_id in campaign.branch_ids or campaign.branch_id == ctx.branch_id


def admits_city(campaign: Campaign, ctx: LocationContext) -> bool:
    if not ctx.city or not campaign.cities:
        return False
    return ctx.city.casefold() in {city.casefold() for city in campaign.cities}


def admits_geofence(campaign: Campaign, ctx: LocationContext) -> bool:
    if campaign.geofence is None or ctx.coordinates is None:
        return False
    lng, lat = ctx.coordinates
    return campaign.geofence.contains(lng, lat)


def admits_unrestricted(campaign: Campaign, ctx: LocationContext) -> bool:
    return campaign.is_unrestricted


TARGETING_PREDICATES: tuple[Admits, ...] = (
    admits_branch,
    admits_city,
    admits_geofence,
    admits_unrestricted,
)


def admits(campaign: Campaign, ctx: LocationContext) -> bool:
    return any(predicate(campaign, ctx) for predicate in TARGETING_PREDICATES)


def active_campaigns(
    campaigns: Iterable[Campaign], now: datetime, ctx: LocationContext
) -> list[Campaign]:
    """Campaigns live at ``now`` and visible from ``ctx``, in input order."""

    return [c for c in campaigns if is_live(c, now) and admits(c, ctx)]
