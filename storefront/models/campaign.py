"""Offer campaign tables."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.models.base import Base


class OfferCampaign(Base):
    """Promotional rule: pricing mode, coverage, targeting and stacking policy.

    Targeting sets are JSON arrays; an empty or NULL array means the campaign is
    unrestricted on that axis. ``geo`` holds either
    ``{"type": "Point", "coordinates": [lng, lat], "radiusMeters": r}`` or a
    GeoJSON polygon. ``branch_id`` is the legacy single-branch scope.
    """

    __tablename__ = "offer_campaigns"
    __table_args__ = (
        Index("ix_offer_campaigns_window", "is_active", "starts_at", "ends_at"),
        Index("ix_offer_campaigns_priority", "priority"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    apply_mode: Mapped[str] = mapped_column(String(16), nullable=False)
    bulk_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2))
    bulk_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))

    branch_ids: Mapped[Optional[list[int]]] = mapped_column(JSON)
    cities: Mapped[Optional[list[str]]] = mapped_column(JSON)
    geo: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    category_ids: Mapped[Optional[list[int]]] = mapped_column(JSON)
    product_ids: Mapped[Optional[list[int]]] = mapped_column(JSON)

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stackable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    branch_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("branches.id", ondelete="SET NULL"), index=True
    )

    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_role: Mapped[str] = mapped_column(String(16), nullable=False)
    updated_by: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    items: Mapped[list["OfferCampaignItem"]] = relationship(
        back_populates="campaign",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OfferCampaignItem.id",
    )


class OfferCampaignItem(Base):
    """Per-product override; ``offer_price``/``percent`` only matter under perItem."""

    __tablename__ = "offer_campaign_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    campaign_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("offer_campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    offer_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2))

    campaign: Mapped[OfferCampaign] = relationship(back_populates="items")
