"""Dashboard statistics endpoint.

Served through the shared cache store so that concurrent requests within
the dedupe window share a single database round trip, and so that a
completed upload (which invalidates the stats entry) is visible on the
next request.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from fisboard.api.dependencies import get_cache_store, get_data_source
from fisboard.controllers.stats_view import StatsViewController
from fisboard.core.config import settings
from fisboard.services.cache import CacheStore
from fisboard.services.data_source import ReceiptDataSource

router = APIRouter(prefix=settings.API_PREFIX, tags=["stats"])


@router.get("/stats")
async def get_stats(
    store: CacheStore = Depends(get_cache_store),
    data_source: ReceiptDataSource = Depends(get_data_source),
) -> JSONResponse:
    # request-scoped view: no polling, the store keeps the value for the next caller
    view = StatsViewController(store, data_source, refresh_interval=0)
    try:
        stats = await view.wait()
        error = view.error
    finally:
        view.close()

    if stats is None:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": error.message if error else "Statistics could not be loaded"},
        )
    return JSONResponse(content={"success": True, "data": stats.model_dump(by_alias=True, mode="json")})
