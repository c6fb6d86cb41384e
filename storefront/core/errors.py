"""Domain exceptions and their HTTP translation."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger


class StorefrontError(Exception):
    """Base class for errors raised by the pricing and ordering services."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "BAD_REQUEST"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def payload(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class NotFoundError(StorefrontError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class PermissionDeniedError(StorefrontError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class CampaignValidationError(StorefrontError):
    """Rejected campaign write; ``errors`` carries field-level detail."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "CAMPAIGN_INVALID"

    def __init__(self, message: str, errors: list[dict[str, str]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []

    def payload(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, "errors": self.errors}


class CampaignConflictError(StorefrontError):
    """Coverage overlaps an existing live campaign."""

    status_code = status.HTTP_409_CONFLICT
    code = "PRODUCT_CONFLICT"

    def __init__(self, conflicts: list[dict[str, Any]]) -> None:
        summary = "; ".join(
            f'"{c["campaign_title"]}" already includes: {", ".join(c["products"])}'
            for c in conflicts
        )
        super().__init__(f"Product conflict detected. {summary}")
        self.conflicts = conflicts

    def payload(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, "conflicts": self.conflicts}


class OrderIntegrityError(StorefrontError):
    """Client-submitted totals disagree with the server-side recomputation.

    The public message is deliberately generic; the specifics only go to logs.
    """

    code = "ORDER_REJECTED"
    public_message = "Order totals could not be verified. Please refresh your cart and try again."

    def __init__(self, reason: str) -> None:
        super().__init__(self.public_message)
        self.reason = reason


class OrderValidationError(StorefrontError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "ORDER_INVALID"


def install_error_handlers(app: FastAPI) -> None:
    """Attach the domain-error handler to the FastAPI app."""

    async def storefront_error_handler(request: Request, exc: StorefrontError):  # type: ignore[unused-arg]
        logger.bind(
            path=str(request.url.path),
            error_code=exc.code,
            status=exc.status_code,
            reason=getattr(exc, "reason", exc.message),
        ).info("request_rejected")
        return JSONResponse(status_code=exc.status_code, content=exc.payload())

    app.add_exception_handler(StorefrontError, storefront_error_handler)
