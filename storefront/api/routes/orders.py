"""Checkout and order lookup endpoints."""

import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from storefront.core.clock import Clock
from storefront.core.config import settings
from storefront.core.deps import get_clock, get_current_actor, get_order_assembler, require_roles
from storefront.core.rate_limit import get_client_ip, limiter
from storefront.schemas.order import OrderCreate, OrderOut, OrderPage
from storefront.services.domain import Actor
from storefront.services.orders import OrderAssembler

router = APIRouter(prefix="/orders", tags=["orders"])

customer_only = require_roles("customer")


@router.post("", response_model=OrderOut, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.ORDER_CREATE_RATE)
async def create_order(
    payload: OrderCreate,
    request: Request,
    actor: Actor = Depends(customer_only),
    assembler: OrderAssembler = Depends(get_order_assembler),
    clock: Clock = Depends(get_clock),
):
    """Place an order; totals are recomputed server-side before anything is stored."""

    order = await assembler.create_order(
        actor, payload, clock(), client_ip=get_client_ip(request)
    )
    return OrderOut.from_domain(order)


@router.get("/mine", response_model=OrderPage)
async def my_orders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    order_status: Optional[str] = Query(default=None, alias="status", max_length=16),
    actor: Actor = Depends(customer_only),
    assembler: OrderAssembler = Depends(get_order_assembler),
):
    orders, total = await assembler.customer_orders(
        actor, page=page, limit=limit, status=order_status
    )
    return OrderPage(
        orders=[OrderOut.from_domain(o) for o in orders],
        total=total,
        page=page,
        total_pages=math.ceil(total / limit) if total else 0,
    )


@router.get("/{order_number}", response_model=OrderOut)
async def get_order(
    order_number: str,
    actor: Actor = Depends(get_current_actor),
    assembler: OrderAssembler = Depends(get_order_assembler),
):
    return OrderOut.from_domain(await assembler.get_order(actor, order_number))
