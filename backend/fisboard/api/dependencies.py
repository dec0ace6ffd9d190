"""Common dependencies for FastAPI routes.

Shared objects (the cache store and the invalidation coordinator) live
on ``app.state`` and are created by the application lifespan. Tests
replace the data source and the upload service through
``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from fisboard.core.database import get_db
from fisboard.services.cache import CacheConfig, CacheStore
from fisboard.services.data_source import ReceiptDataSource
from fisboard.services.invalidation import InvalidationCoordinator
from fisboard.services.upload_service import UploadService


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Alias for `get_db` to be imported in routers."""
    async for session in get_db():
        yield session


def get_cache_store(request: Request) -> CacheStore:
    store = getattr(request.app.state, "cache_store", None)
    if store is None:
        store = CacheStore(CacheConfig.from_settings())
        request.app.state.cache_store = store
    return store


def get_coordinator(request: Request) -> InvalidationCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        coordinator = InvalidationCoordinator(get_cache_store(request))
        request.app.state.coordinator = coordinator
    return coordinator


def get_data_source() -> ReceiptDataSource:
    return ReceiptDataSource()


def get_upload_service() -> UploadService:
    return UploadService()
