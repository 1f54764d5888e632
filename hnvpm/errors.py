"""Domain exceptions and the JSON handlers that render them."""
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

logger = logging.getLogger(__name__)


class DomainError(Exception):
    status_code = 400

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        return {"detail": self.message, **self.extra}


LIMIT_LABELS = {
    "properties": "Property",
    "tenants": "Tenant",
    "users": "User",
    "exports": "Export",
    "storage": "Storage",
}


class UsageLimitExceeded(DomainError):
    """An organization is at or over a plan limit."""
    status_code = 403

    def __init__(self, limit_type: str, reason: str, current_usage: Optional[int] = None,
                 limit: Optional[int] = None):
        super().__init__(
            f"{LIMIT_LABELS.get(limit_type, limit_type.capitalize())} limit exceeded",
            limit_type=limit_type,
            reason=reason,
            current_usage=current_usage,
            limit=limit,
        )


class AccessRestricted(DomainError):
    """The account is view-only until email is verified or the subscription renewed."""
    status_code = 403

    def __init__(self, message: str, action: str, upgrade_url: str):
        super().__init__(message, action=action, upgrade_url=upgrade_url)


class PaymentProviderError(DomainError):
    status_code = 502


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
        return JSONResponse(status_code=409, content={"detail": "Duplicate or conflicting record"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
