"""FastAPI dependencies: authentication, clock and service wiring."""

from functools import lru_cache
from typing import Callable, Iterable

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.clock import Clock, utcnow
from storefront.core.db import get_session
from storefront.core.logging import user_code_ctx_var
from storefront.core.rate_limit import get_client_ip
from storefront.core.security import decode_access_token
from storefront.models.user import AppUser
from storefront.services.branch_locator import BranchLocator
from storefront.services.campaign_admin import CampaignAdmin
from storefront.services.domain import Actor
from storefront.services.geo import GeoResolver
from storefront.services.offer_resolution import OfferResolver
from storefront.services.orders import OrderAssembler
from storefront.stores.sql import (
    SqlAuditTrail,
    SqlBranchIndex,
    SqlCampaignStore,
    SqlCatalog,
    SqlOrderStore,
)


async def get_current_user(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> AppUser:
    auth = request.headers.get("Authorization")
    if not auth or not auth.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
        )
    token = auth.split(" ", 1)[1]
    try:
        payload = decode_access_token(token)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        )
    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type"
        )
    user_code = payload.get("sub")
    if not user_code:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        )
    user = (
        await session.execute(select(AppUser).where(AppUser.user_code == user_code))
    ).scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User inactive or not found",
        )
    request.state.user_code = user.user_code
    user_code_ctx_var.set(user.user_code)
    session.expunge(user)
    return user


async def get_current_actor(
    request: Request, user: AppUser = Depends(get_current_user)
) -> Actor:
    return Actor(
        user_code=user.user_code,
        role=user.role,
        branch_id=user.branch_id,
        remote_addr=get_client_ip(request),
    )


def require_roles(*roles: str) -> Callable[..., Actor]:
    """Dependency factory rejecting callers whose role is not in ``roles``."""

    allowed: Iterable[str] = frozenset(roles)

    async def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        return actor

    return dependency


def get_clock() -> Clock:
    return utcnow


@lru_cache
def get_geo_resolver() -> GeoResolver:
    return GeoResolver()


def get_branch_index(session: AsyncSession = Depends(get_session)) -> SqlBranchIndex:
    return SqlBranchIndex(session)


def get_catalog(session: AsyncSession = Depends(get_session)) -> SqlCatalog:
    return SqlCatalog(session)


def get_campaign_store(session: AsyncSession = Depends(get_session)) -> SqlCampaignStore:
    return SqlCampaignStore(session)


def get_audit_trail(session: AsyncSession = Depends(get_session)) -> SqlAuditTrail:
    return SqlAuditTrail(session)


def get_order_store(session: AsyncSession = Depends(get_session)) -> SqlOrderStore:
    return SqlOrderStore(session)


def get_branch_locator(index=Depends(get_branch_index)) -> BranchLocator:
    return BranchLocator(index)


def get_offer_resolver(
    campaigns=Depends(get_campaign_store),
    catalog=Depends(get_catalog),
    locator: BranchLocator = Depends(get_branch_locator),
    geo: GeoResolver = Depends(get_geo_resolver),
) -> OfferResolver:
    return OfferResolver(campaigns, catalog, locator, geo)


def get_campaign_admin(
    campaigns=Depends(get_campaign_store),
    catalog=Depends(get_catalog),
    audit=Depends(get_audit_trail),
) -> CampaignAdmin:
    return CampaignAdmin(campaigns, catalog, audit)


def get_order_assembler(
    orders=Depends(get_order_store),
    catalog=Depends(get_catalog),
    campaigns=Depends(get_campaign_store),
    locator: BranchLocator = Depends(get_branch_locator),
    geo: GeoResolver = Depends(get_geo_resolver),
) -> OrderAssembler:
    return OrderAssembler(orders, catalog, campaigns, locator, geo)
