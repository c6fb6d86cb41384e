"""Audit trail writes for campaign administration and sign-in events."""

from __future__ import annotations

import json
from typing import Any, Optional

from loguru import logger
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.clock import utcnow
from storefront.core.db import SessionLocal
from storefront.models.audit import AuditLog


def _audit_values(
    actor_code: str,
    actor_role: str,
    entity: str,
    entity_id: Optional[str],
    action: str,
    details: Optional[dict[str, Any]],
    remote_addr: Optional[str],
) -> dict[str, Any]:
    return {
        "event_time": utcnow(),
        "actor_code": actor_code,
        "actor_role": actor_role,
        "entity": entity,
        "entity_id": entity_id,
        "action": action,
        # datetimes and Decimals in details are stored as their string form
        "details": json.dumps(details, default=str) if details is not None else None,
        "remote_addr": remote_addr,
    }


async def log_audit(
    session: AsyncSession,
    actor_code: str,
    actor_role: str,
    entity: str,
    entity_id: Optional[str],
    action: str,
    details: Optional[dict[str, Any]] = None,
    remote_addr: Optional[str] = None,
    *,
    independent_txn: bool = False,
) -> None:
    """Insert one audit row.

    By default the row joins the caller's transaction and disappears with it on
    rollback. ``independent_txn`` commits it on a separate session, for events
    that must outlive a failing request such as rejected sign-ins.
    """

    values = _audit_values(actor_code, actor_role, entity, entity_id, action, details, remote_addr)
    if independent_txn:
        async with SessionLocal() as audit_session:
            async with audit_session.begin():
                await audit_session.execute(insert(AuditLog).values(**values))
    else:
        await session.execute(insert(AuditLog).values(**values))
    logger.bind(entity=entity, entity_id=entity_id, action=action).debug("audit_recorded")
