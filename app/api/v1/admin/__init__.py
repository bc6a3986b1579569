"""Admin API (roles with manage_system, or roles that bypass access control)."""
from fastapi import APIRouter
from app.api.v1.admin import rbac as admin_rbac

admin_router = APIRouter(prefix="/admin", tags=["admin"])
admin_router.include_router(admin_rbac.router, prefix="/rbac", tags=["admin-rbac"])
