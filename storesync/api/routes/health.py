"""
Health check endpoint.
"""

from fastapi import APIRouter

from ..schemas import HealthResponse
from ...core.database import get_database

router = APIRouter(tags=["health"])

VERSION = "1.0.0"


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Check API health and database status."""
    db = get_database()

    return HealthResponse(
        status="healthy",
        version=VERSION,
        counts=db.get_counts()
    )
