"""
Health check endpoint
"""
from fastapi import APIRouter

from app.core.constants import SERVICE_NAME

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Health check endpoint
    """
    return {
        "status": "ok",
        "service": SERVICE_NAME,
    }
