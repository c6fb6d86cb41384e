"""Helpers for optimistic concurrency control."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import HTTPException, status


def ensure_expected_timestamp(
    current: Optional[datetime], expected: Optional[datetime]
) -> None:
    """Raise HTTP 409 if the persisted ``updated_at`` differs from what the client saw.

    A missing ``expected`` value skips the check; campaign edits from older
    consoles do not send one.
    """

    if expected is None:
        return
    if current is not None and current.replace(tzinfo=None, microsecond=0) == expected.replace(
        tzinfo=None, microsecond=0
    ):
        return
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="Campaign has been updated by someone else. Please reload and try again.",
    )
