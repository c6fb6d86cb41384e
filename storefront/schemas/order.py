"""Pydantic schemas for checkout and order retrieval."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from storefront.services.domain import PlacedOrder

COMPANY_FIELDS = (
    "company_name",
    "phone",
    "cr_number",
    "vat_number",
    "address",
    "building_number",
    "district",
    "postal_code",
)
INDIVIDUAL_FIELDS = (
    "first_name",
    "last_name",
    "phone",
    "address",
    "building_number",
    "district",
    "email",
)


class ShippingAddress(BaseModel):
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: Optional[str] = Field(default=None, max_length=32)
    company_name: Optional[str] = Field(default=None, max_length=255)
    address: Optional[str] = Field(default=None, max_length=500)
    apartment: Optional[str] = Field(default=None, max_length=100)
    district: Optional[str] = Field(default=None, max_length=120)
    city: Optional[str] = Field(default=None, max_length=120)
    building_number: Optional[str] = Field(default=None, max_length=20)
    secondary_number: Optional[str] = Field(default=None, max_length=20)
    postal_code: Optional[str] = Field(default=None, max_length=20)
    cr_number: Optional[str] = Field(default=None, max_length=50)
    vat_number: Optional[str] = Field(default=None, max_length=50)
    vat_registered: bool = False

    @field_validator("*", mode="before")
    @classmethod
    def _strip_strings(cls, value):
        if isinstance(value, str):
            trimmed = value.strip()
            return trimmed or None
        return value

    @model_validator(mode="after")
    def _check_required(self) -> "ShippingAddress":
        required = COMPANY_FIELDS if self.vat_registered else INDIVIDUAL_FIELDS
        missing = [name for name in required if not getattr(self, name)]
        if missing:
            kind = "VAT registered companies" if self.vat_registered else "individual customers"
            raise ValueError(f"{', '.join(missing)} required for {kind}")
        return self


class ClientLocation(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(default=None, ge=0)


class OrderLineIn(BaseModel):
    product_id: int = Field(..., ge=1)
    quantity: int = Field(..., ge=1, le=1000)


class OrderCreate(BaseModel):
    items: List[OrderLineIn] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: Literal["mada", "emkan", "cod"]
    subtotal: Decimal = Field(..., ge=Decimal("0"))
    shipping: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    total: Decimal = Field(..., ge=Decimal("0"))
    notes: Optional[str] = Field(default=None, max_length=1000)
    save_info: bool = False
    client_location: Optional[ClientLocation] = None
    branch_id: Optional[int] = None


class OrderLineOut(BaseModel):
    product_id: int
    title: str
    price: float
    offer_price: Optional[float] = None
    quantity: int
    subtotal: float
    image: Optional[str] = None


class OrderOut(BaseModel):
    order_number: str
    customer_code: str
    branch_id: Optional[int] = None
    status: str
    payment_status: str
    payment_method: str
    shipping_address: dict
    items: List[OrderLineOut]
    subtotal: float
    shipping: float
    total: float
    notes: Optional[str] = None
    location_source: str
    created_at: datetime

    @classmethod
    def from_domain(cls, order: PlacedOrder) -> "OrderOut":
        return cls(
            order_number=order.order_number,
            customer_code=order.customer_code,
            branch_id=order.branch_id,
            status=order.status,
            payment_status=order.payment_status,
            payment_method=order.payment_method,
            shipping_address=order.shipping_address,
            items=[
                OrderLineOut(
                    product_id=line.product_id,
                    title=line.title,
                    price=float(line.price),
                    offer_price=float(line.offer_price) if line.offer_price is not None else None,
                    quantity=line.quantity,
                    subtotal=float(line.subtotal),
                    image=line.image,
                )
                for line in order.lines
            ],
            subtotal=float(order.subtotal),
            shipping=float(order.shipping),
            total=float(order.total),
            notes=order.notes,
            location_source=order.location_source,
            created_at=order.created_at,
        )


class OrderPage(BaseModel):
    orders: List[OrderOut]
    total: int
    page: int
    total_pages: int
