"""Entry point for the FastAPI application.

This module constructs the FastAPI app, includes all routers and
manages the application lifespan: the database tables are created on
startup and the shared cache store is built from
``fisboard.core.config`` and closed on shutdown.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from fisboard import __version__
from fisboard.api.endpoints.health import router as health_router
from fisboard.api.error_handlers import generic_exception_handler, validation_exception_handler
from fisboard.api.routes.stats import router as stats_router
from fisboard.api.routes.upload import router as upload_router
from fisboard.core.config import settings
from fisboard.core.database import get_db_debug_info, init_db
from fisboard.core.observability import init_sentry
from fisboard.services.cache import CacheConfig, CacheStore
from fisboard.services.invalidation import InvalidationCoordinator

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    # Startup
    logger.info("Starting up...")
    # Centralised Sentry init (idempotent)
    if init_sentry("api"):
        logger.info("Sentry SDK initialized (api)")
    await init_db()
    store = CacheStore(CacheConfig.from_settings())
    app.state.cache_store = store
    app.state.coordinator = InvalidationCoordinator(store)
    yield
    # Shutdown
    logger.info("Shutting down...")
    await store.aclose()


# Create FastAPI app
app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    version=__version__,
    lifespan=lifespan,
)


# Middleware to tag Sentry events with the request path and method
@app.middleware("http")
async def sentry_context_middleware(request: Request, call_next):  # type: ignore
    if settings.SENTRY_DSN:
        scope = sentry_sdk.get_current_scope()
        scope.set_tag("path", request.url.path)
        scope.set_tag("method", request.method)
    response = await call_next(request)
    return response

"""CORS configuration.

In development every origin is allowed; otherwise BACKEND_CORS_ORIGINS
is used as given. Preflight (OPTIONS) requests for the upload proxy are
answered by the middleware.
"""
env_is_dev = (settings.ENVIRONMENT or "development").lower() == "development"
allow_origins = ["*"] if env_is_dev else list(dict.fromkeys(settings.BACKEND_CORS_ORIGINS or []))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=not env_is_dev,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# Register custom exception handlers
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Include routers
app.include_router(health_router)
app.include_router(upload_router)
app.include_router(stats_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": f"Welcome to the {settings.PROJECT_NAME} receipt dashboard API"}


@app.get("/debug/db")
async def db_debug():
    """Return non-sensitive DB diagnostics (for development)."""
    return get_db_debug_info()
