"""
Main API router
"""
from fastapi import APIRouter

from app.api.v1 import (
    health,
    auth,
    clock,
    access,
    version,
)
from app.api.v1.admin import admin_router

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(version.router, tags=["version"])
api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
api_router.include_router(clock.router, prefix="/clock", tags=["clock"])
api_router.include_router(access.router, prefix="/access", tags=["access"])
api_router.include_router(admin_router)
