"""ORM model exports for convenient imports elsewhere in the app."""

from storefront.models.base import Base
from storefront.models.audit import AuditLog
from storefront.models.branch import Branch
from storefront.models.campaign import OfferCampaign, OfferCampaignItem
from storefront.models.catalog import Category, Product
from storefront.models.order import CustomerAddress, Order, OrderItem
from storefront.models.sequence import NamedSequence
from storefront.models.user import AppUser

__all__ = [
    "Base",
    "AppUser",
    "AuditLog",
    "Branch",
    "Category",
    "CustomerAddress",
    "NamedSequence",
    "OfferCampaign",
    "OfferCampaignItem",
    "Order",
    "OrderItem",
    "Product",
]
