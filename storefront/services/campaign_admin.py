"""Campaign administration: role checks, validation, conflict detection and audit."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Optional

from loguru import logger

from storefront.core.clock import to_naive_utc
from storefront.core.errors import (
    CampaignConflictError,
    CampaignValidationError,
    NotFoundError,
    PermissionDeniedError,
)
from storefront.core.optimistic_lock import ensure_expected_timestamp
from storefront.schemas.offer import CampaignCreate, CampaignItemIn, CampaignUpdate
from storefront.services.domain import Actor, Campaign, CampaignItem
from storefront.stores.base import AuditTrail, CampaignStore, Catalog

ENTITY = "offer_campaign"
STAFF_ROLES = {"admin", "branch"}


def _items(items: Iterable[CampaignItemIn]) -> tuple[CampaignItem, ...]:
    return tuple(
        CampaignItem(product_id=i.product_id, offer_price=i.offer_price, percent=i.percent)
        for i in items
    )


class CampaignAdmin:
    def __init__(self, store: CampaignStore, catalog: Catalog, audit: AuditTrail):
        self.store = store
        self.catalog = catalog
        self.audit = audit

    # -- permissions -------------------------------------------------------

    @staticmethod
    def _require_staff(actor: Actor) -> None:
        if actor.role not in STAFF_ROLES:
            raise PermissionDeniedError("Access denied")
        if actor.role == "branch" and actor.branch_id is None:
            raise PermissionDeniedError("Branch account is not linked to a branch")

    @staticmethod
    def _check_access(actor: Actor, campaign: Campaign) -> None:
        if (
            actor.role == "branch"
            and campaign.branch_id is not None
            and campaign.branch_id != actor.branch_id
        ):
            raise PermissionDeniedError("Access denied")

    async def _load(self, actor: Actor, campaign_id: int) -> Campaign:
        self._require_staff(actor)
        campaign = await self.store.get(campaign_id)
        if campaign is None:
            raise NotFoundError("Offer campaign not found")
        self._check_access(actor, campaign)
        return campaign

    # -- validation --------------------------------------------------------

    async def _ensure_products_exist(self, product_ids: set[int]) -> None:
        if not product_ids:
            return
        found = await self.catalog.products(product_ids)
        missing = sorted(product_ids - set(found))
        if missing:
            raise NotFoundError(
                f"One or more products not found: {', '.join(str(pid) for pid in missing)}"
            )

    @staticmethod
    def _check_branch_scope(actor: Actor, campaign: Campaign) -> Campaign:
        """Pin branch-operator campaigns to the operator's own branch."""

        if actor.role != "branch":
            return campaign
        errors = []
        if campaign.cities:
            errors.append({"field": "cities", "message": "Branch campaigns cannot target cities"})
        if campaign.geofence is not None:
            errors.append({"field": "geo", "message": "Branch campaigns cannot define a geofence"})
        if campaign.branch_ids - {actor.branch_id}:
            errors.append({"field": "branch_ids", "message": "Branch campaigns target their own branch only"})
        if errors:
            raise CampaignValidationError("Campaign targeting is not allowed", errors)
        return replace(campaign, branch_id=actor.branch_id, branch_ids=frozenset({actor.branch_id}))

    @staticmethod
    def _check_window(campaign: Campaign) -> None:
        if campaign.starts_at and campaign.ends_at and campaign.ends_at < campaign.starts_at:
            raise CampaignValidationError(
                "Invalid campaign window",
                [{"field": "ends_at", "message": "ends_at must not be before starts_at"}],
            )

    async def check_conflicts(
        self, campaign: Campaign, now: datetime, *, exclude_id: Optional[int] = None
    ) -> None:
        """Reject coverage that overlaps another live campaign.

        Two stackable campaigns may share products. A branch-scoped campaign is
        compared with global and same-branch campaigns; a global one with all.
        """

        claimed = campaign.claimed_product_ids
        if not claimed:
            return
        others = await self.store.overlapping(
            claimed, now, exclude_id=exclude_id, target_branch=campaign.branch_id
        )
        clashes = [
            other
            for other in others
            if not (campaign.stackable and other.stackable)
            and other.claimed_product_ids & claimed
        ]
        if not clashes:
            return
        overlap_ids: set[int] = set()
        for other in clashes:
            overlap_ids |= other.claimed_product_ids & claimed
        products = await self.catalog.products(overlap_ids)
        conflicts: list[dict[str, Any]] = []
        for other in clashes:
            shared = sorted(other.claimed_product_ids & claimed)
            conflicts.append(
                {
                    "campaign_id": other.id,
                    "campaign_title": other.title,
                    "products": [
                        products[pid].title if pid in products else str(pid) for pid in shared
                    ],
                }
            )
        logger.bind(
            campaign_title=campaign.title, conflicts=len(conflicts)
        ).info("campaign_conflict_detected")
        raise CampaignConflictError(conflicts)

    async def _record(self, actor: Actor, campaign_id: int, action: str, details: dict) -> None:
        await self.audit.record(
            actor_code=actor.user_code,
            actor_role=actor.role,
            entity=ENTITY,
            entity_id=str(campaign_id),
            action=action,
            details=details,
            remote_addr=actor.remote_addr,
        )

    # -- operations --------------------------------------------------------

    async def create(self, actor: Actor, payload: CampaignCreate, now: datetime) -> Campaign:
        self._require_staff(actor)
        campaign = Campaign(
            id=0,
            title=payload.title,
            mode=payload.pricing.to_domain(),
            starts_at=to_naive_utc(payload.starts_at),
            ends_at=to_naive_utc(payload.ends_at),
            is_active=True,
            items=_items(payload.items),
            product_ids=frozenset(payload.product_ids),
            category_ids=frozenset(payload.category_ids),
            branch_ids=frozenset(payload.branch_ids),
            cities=frozenset(payload.cities),
            geofence=payload.geo.to_domain() if payload.geo is not None else None,
            priority=payload.priority,
            stackable=payload.stackable,
            branch_id=payload.branch_id if actor.role == "admin" else None,
            created_by=actor.user_code,
            created_role=actor.role,
        )
        campaign = self._check_branch_scope(actor, campaign)
        self._check_window(campaign)

        async def unit() -> Campaign:
            await self._ensure_products_exist(set(campaign.claimed_product_ids))
            await self.check_conflicts(campaign, now)
            saved = await self.store.save(campaign, actor_code=actor.user_code)
            await self._record(
                actor,
                saved.id,
                "create",
                {"title": saved.title, "scope": "branch" if saved.branch_id else "global"},
            )
            return saved

        saved = await self.store.atomic(unit, label="campaign_create")
        logger.bind(campaign_id=saved.id, mode=saved.mode.kind).info("campaign_created")
        return saved

    def _apply_update(self, actor: Actor, current: Campaign, payload: CampaignUpdate) -> tuple[Campaign, list[str]]:
        sent = payload.model_fields_set
        changes: dict[str, Any] = {}
        if payload.title is not None:
            changes["title"] = payload.title
        if payload.pricing is not None:
            changes["mode"] = payload.pricing.to_domain()
        if "starts_at" in sent:
            changes["starts_at"] = to_naive_utc(payload.starts_at)
        if "ends_at" in sent:
            changes["ends_at"] = to_naive_utc(payload.ends_at)
        if payload.is_active is not None:
            changes["is_active"] = payload.is_active
        if payload.items is not None:
            changes["items"] = _items(payload.items)
        if payload.product_ids is not None:
            changes["product_ids"] = frozenset(payload.product_ids)
        if payload.category_ids is not None:
            changes["category_ids"] = frozenset(payload.category_ids)
        if payload.branch_ids is not None:
            changes["branch_ids"] = frozenset(payload.branch_ids)
        if payload.cities is not None:
            changes["cities"] = frozenset(payload.cities)
        if "geo" in sent:
            changes["geofence"] = payload.geo.to_domain() if payload.geo is not None else None
        if payload.priority is not None:
            changes["priority"] = payload.priority
        if payload.stackable is not None:
            changes["stackable"] = payload.stackable
        if actor.role == "admin" and "branch_id" in sent:
            changes["branch_id"] = payload.branch_id

        updated = replace(current, **changes)
        if actor.role == "branch" and current.branch_id is not None:
            updated = self._check_branch_scope(actor, updated)
        self._check_window(updated)
        return updated, sorted(changes)

    async def update(
        self, actor: Actor, campaign_id: int, payload: CampaignUpdate, now: datetime
    ) -> Campaign:
        async def unit() -> tuple[Campaign, list[str]]:
            current = await self._load(actor, campaign_id)
            ensure_expected_timestamp(current.updated_at, to_naive_utc(payload.expected_updated_at))
            updated, fields = self._apply_update(actor, current, payload)
            coverage_changed = updated.claimed_product_ids != current.claimed_product_ids
            if coverage_changed:
                await self._ensure_products_exist(
                    set(updated.claimed_product_ids - current.claimed_product_ids)
                )
            if coverage_changed or {"branch_id", "stackable", "is_active"} & set(fields):
                await self.check_conflicts(updated, now, exclude_id=current.id)
            saved = await self.store.save(updated, actor_code=actor.user_code)
            await self._record(actor, saved.id, "update", {"fields": fields})
            return saved, fields

        saved, fields = await self.store.atomic(unit, label="campaign_update")
        logger.bind(campaign_id=saved.id, fields=fields).info("campaign_updated")
        return saved

    async def extend(
        self, actor: Actor, campaign_id: int, ends_at: datetime, now: datetime
    ) -> Campaign:
        new_end = to_naive_utc(ends_at)
        if new_end <= now:
            raise CampaignValidationError(
                "End date must be in the future",
                [{"field": "ends_at", "message": "End date must be in the future"}],
            )

        async def unit() -> Campaign:
            current = await self._load(actor, campaign_id)
            saved = await self.store.save(replace(current, ends_at=new_end), actor_code=actor.user_code)
            await self._record(actor, saved.id, "update", {"action": "extended", "ends_at": new_end})
            return saved

        return await self.store.atomic(unit, label="campaign_extend")

    async def set_status(
        self, actor: Actor, campaign_id: int, is_active: bool, now: datetime
    ) -> Campaign:
        async def unit() -> Campaign:
            current = await self._load(actor, campaign_id)
            updated = replace(current, is_active=is_active)
            if is_active and not current.is_active:
                await self.check_conflicts(updated, now, exclude_id=current.id)
            saved = await self.store.save(updated, actor_code=actor.user_code)
            await self._record(
                actor, saved.id, "update", {"action": "activated" if is_active else "deactivated"}
            )
            return saved

        return await self.store.atomic(unit, label="campaign_status")

    async def delete(self, actor: Actor, campaign_id: int) -> None:
        async def unit() -> None:
            current = await self._load(actor, campaign_id)
            if actor.role == "branch" and current.created_by != actor.user_code:
                raise PermissionDeniedError("Access denied")
            await self.store.delete(current.id)
            await self._record(actor, current.id, "delete", {"title": current.title})

        await self.store.atomic(unit, label="campaign_delete")
        logger.bind(campaign_id=campaign_id).info("campaign_deleted")

    async def list_campaigns(
        self, actor: Actor, *, scope: Optional[str] = None, is_active: Optional[bool] = None
    ) -> list[Campaign]:
        self._require_staff(actor)
        if actor.role == "branch":
            return await self.store.list_campaigns(
                visible_to_branch=actor.branch_id, is_active=is_active
            )
        return await self.store.list_campaigns(scope=scope, is_active=is_active)

    async def get(self, actor: Actor, campaign_id: int) -> Campaign:
        return await self._load(actor, campaign_id)
