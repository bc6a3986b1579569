"""
CareNest Access Backend - Main Application Entry Point
"""
import logging
from urllib.parse import urlparse, urlunparse

from fastapi import FastAPI
from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from app.api.router import api_router
from app.core.config import settings
from app.core.constants import (
    PERMISSION_CLOCK_IN_OUT,
    PERMISSION_EDIT_CLIENTS,
    PERMISSION_MANAGE_STAFF,
    PERMISSION_MANAGE_SYSTEM,
    PERMISSION_VIEW_CLIENTS,
    PERMISSION_VIEW_PROPERTIES,
)
from app.core.errors import (
    RBACError,
    rbac_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from app.core.logging import setup_logging
from app.core.security import hash_password
from app.db.session import SessionLocal
from app.models.organization import Organization
from app.models.role import Role
from app.models.staff import Staff, StaffStatus
from app.services.rbac_config_service import get_or_create_settings

# Setup logging first
setup_logging()
logger = logging.getLogger(__name__)

ADMIN_ROLE_NAME = "Office Admin"


def _mask_database_url(url: str) -> str:
    """Mask password in DATABASE_URL for safe logging; show full path for sqlite."""
    try:
        parsed = urlparse(url)
        if parsed.scheme == "sqlite":
            return url
        if parsed.password:
            netloc = f"{parsed.username}:****@{parsed.hostname or ''}"
            if parsed.port:
                netloc += f":{parsed.port}"
            return urlunparse(parsed._replace(netloc=netloc))
    except ValueError:
        return "***"
    return url


def _slugify(name: str) -> str:
    return "-".join(part for part in "".join(c.lower() if c.isalnum() else " " for c in name).split())


# Create FastAPI app
app = FastAPI(
    title="CareNest Access Backend",
    description="Roster-based access control for care organizations",
    version=settings.VERSION or "1.0.0"
)

# Configure CORS - must be before other middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Register exception handlers
app.add_exception_handler(RBACError, rbac_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Include all API routes under /api/v1
app.include_router(api_router, prefix="/api/v1")


@app.on_event("startup")
def startup_log_config() -> None:
    """Log DATABASE_URL at startup so it can be verified against Alembic."""
    masked = _mask_database_url(settings.DATABASE_URL)
    logger.info("DATABASE_URL (app): %s", masked)


@app.on_event("startup")
def bootstrap_initial_admin() -> None:
    """
    Create the initial organization, administrative role, admin account and
    RBAC settings if no staff member exists yet.

    The organization starts with RBAC switched off: it has no role with RBAC
    enabled until roles are seeded, and the master switch needs at least one.
    """
    db = SessionLocal()
    try:
        if db.query(Staff).first() is not None:
            logger.info("Staff already exist, skipping initial bootstrap")
            return

        logger.info("No staff found, creating initial admin setup...")

        organization = db.query(Organization).order_by(Organization.id).first()
        if organization is None:
            organization = Organization(
                name=settings.INITIAL_ORGANIZATION_NAME,
                slug=_slugify(settings.INITIAL_ORGANIZATION_NAME),
                rbac_enabled=False,
            )
            db.add(organization)
            db.flush()
            logger.info("Created organization: %s", organization.name)

        admin_role = (
            db.query(Role)
            .filter(Role.organization_id == organization.id, Role.name == ADMIN_ROLE_NAME)
            .first()
        )
        if admin_role is None:
            admin_role = Role(
                organization_id=organization.id,
                name=ADMIN_ROLE_NAME,
                description="Administrative staff with unrestricted access",
                rbac_enabled=False,
                bypasses_access_control=True,
                permissions=[
                    PERMISSION_VIEW_CLIENTS,
                    PERMISSION_EDIT_CLIENTS,
                    PERMISSION_VIEW_PROPERTIES,
                    PERMISSION_CLOCK_IN_OUT,
                    PERMISSION_MANAGE_STAFF,
                    PERMISSION_MANAGE_SYSTEM,
                ],
                is_active=True,
            )
            db.add(admin_role)
            db.flush()
            logger.info("Created role: %s", ADMIN_ROLE_NAME)

        initial_admin = Staff(
            organization_id=organization.id,
            role_id=admin_role.id,
            name="System Administrator",
            email=settings.INITIAL_ADMIN_EMAIL.strip().lower(),
            password_hash=hash_password(settings.INITIAL_ADMIN_PASSWORD),
            status=StaffStatus.ACTIVE.value,
            rbac_enabled=False,
        )
        db.add(initial_admin)
        db.commit()

        get_or_create_settings(db, organization.id)

        logger.info("Initial admin user created successfully")
        logger.info("Email: %s", initial_admin.email)
        logger.info("Password: [set via INITIAL_ADMIN_PASSWORD environment variable]")

    except OperationalError as e:
        # Tables might not exist yet on PostgreSQL before migrations
        db.rollback()
        if "no such table" in str(e).lower() or "does not exist" in str(e).lower():
            logger.warning("Database tables not ready yet, skipping initial bootstrap")
        else:
            logger.error("Database error during admin bootstrap: %s", e)
    finally:
        db.close()


def _is_no_such_table(err: BaseException) -> bool:
    msg = str(err).lower()
    return "no such table" in msg or "undefinedtable" in msg


async def _handle_operational_error(request, exc: Exception):
    if _is_no_such_table(exc):
        return JSONResponse(
            status_code=500,
            content={"detail": "Run alembic upgrade head"},
        )
    return await generic_exception_handler(request, exc)


app.add_exception_handler(OperationalError, _handle_operational_error)
