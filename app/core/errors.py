"""
Central error handling for CareNest Access Backend

Domain errors raised by the services (RBACError and subclasses) and the FastAPI
exception handlers that render them in one JSON envelope.
"""
import logging
import traceback
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "*",
    "Access-Control-Allow-Headers": "*",
}


class RBACError(Exception):
    """Base class for access-control errors. Carries the HTTP status it maps to."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str, **extra: Any):
        super().__init__(detail)
        self.detail = detail
        self.extra = extra


class NotFoundError(RBACError):
    """Unknown organization, staff, role, property, client or roster entry"""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} with id {entity_id} not found", entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class MismatchError(RBACError):
    """Roster entry, staff and property do not belong together"""


class StaffInactiveError(RBACError):
    status_code = status.HTTP_403_FORBIDDEN


class RosterEntryStateError(RBACError):
    """Roster entry cannot accept clock events in its current status"""


class ShiftWindowError(RBACError):
    """Clock event outside the scheduled shift plus grace period"""


class LocationPolicyError(RBACError):
    """Clock event rejected by the location policy"""


class LocationRequiredError(LocationPolicyError):
    pass


class OutOfRangeError(LocationPolicyError):
    pass


class GrantValidationError(RBACError):
    pass


class GrantConflictError(RBACError):
    """Concurrent writer already holds the active grant for this staff/property"""

    status_code = status.HTTP_409_CONFLICT


class AccessDeniedError(RBACError):
    status_code = status.HTTP_403_FORBIDDEN


class ConfigurationError(RBACError):
    """RBAC configuration rejected by validation"""

    def __init__(self, errors: List[str], warnings: Optional[List[str]] = None):
        super().__init__("Invalid RBAC configuration", errors=errors, warnings=warnings or [])
        self.errors = errors
        self.warnings = warnings or []


class AuditWriteError(RBACError):
    """Access audit entry could not be persisted"""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


def _error_body(request: Request, status_code: int, detail: Any, **extra: Any) -> Dict[str, Any]:
    body = {
        "error": True,
        "status_code": status_code,
        "detail": detail,
        "path": str(request.url.path),
    }
    body.update(extra)
    return body


async def rbac_exception_handler(request: Request, exc: RBACError) -> JSONResponse:
    """
    Handle RBACError subclasses with the common JSON envelope

    Extra attributes (e.g. validation errors of a rejected config) are included
    alongside the detail.
    """
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.status_code, exc.detail, **exc.extra),
        headers=_CORS_HEADERS,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """
    Handle HTTPException with consistent JSON response format

    Args:
        request: FastAPI request object
        exc: HTTPException instance

    Returns:
        JSONResponse with error details
    """
    headers = dict(_CORS_HEADERS)
    if exc.headers:
        headers.update(exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.status_code, exc.detail),
        headers=headers,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle RequestValidationError with consistent JSON response format

    Does not leak internal validation details in production.
    """
    from app.core.config import settings

    if settings.APP_ENV == "prod":
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=_error_body(request, 422, "Validation error: Invalid request data"),
        )

    # ctx.error may hold a ValueError instance; stringify anything that is not JSON-native
    errors = []
    for e in exc.errors():
        err = dict(e)
        if "ctx" in err and isinstance(err["ctx"], dict):
            err["ctx"] = {
                k: (str(v) if not isinstance(v, (str, int, float, bool, type(None))) else v)
                for k, v in err["ctx"].items()
            }
        errors.append(err)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(request, 422, "Validation error", errors=errors),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions with consistent JSON response format

    Does not leak internal error details in production.
    """
    from app.core.config import settings

    logger.error("Unhandled exception: %s", exc, exc_info=True)

    if settings.APP_ENV == "prod":
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(request, 500, "Internal server error"),
            headers=_CORS_HEADERS,
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            request,
            500,
            str(exc),
            traceback=traceback.format_exc() if settings.APP_ENV == "local" else None,
        ),
        headers=_CORS_HEADERS,
    )
