"""Health check endpoints for monitoring."""
from typing import Dict, Any
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fisboard import __version__
from fisboard.api.dependencies import get_cache_store, get_db_session
from fisboard.core.config import settings
from fisboard.services.cache import CacheStore

router = APIRouter()

@router.api_route("/health", methods=["GET", "HEAD"])
async def health_check() -> Dict[str, Any]:
    """Basic health check endpoint (supports GET & HEAD)."""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": __version__,
    }

@router.get("/health/detailed")
async def detailed_health_check(
    db: AsyncSession = Depends(get_db_session),
    store: CacheStore = Depends(get_cache_store),
) -> Dict[str, Any]:
    """Detailed health check with database and cache status."""
    health_status: Dict[str, Any] = {
        "status": "healthy",
        "services": {},
    }

    # Check database
    try:
        await db.execute(text("SELECT 1"))
        health_status["services"]["database"] = "healthy"
    except (SQLAlchemyError, OSError) as e:
        health_status["services"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    health_status["services"]["cache"] = store.stats()
    return health_status
