"""Simple configuration management.

This module defines a ``Settings`` class that reads configuration
values from environment variables and provides sensible defaults.
``.env`` support is implemented by loading files from the repository
root in a defined order.  You can override any value via environment
variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv, find_dotenv

# -----------------------------------------------------------------------------
# .env loading
#
# Prefer a .env in the repository root but allow fallback to whatever
# python-dotenv discovers from the current working directory.  As a last
# resort, a .env in the backend directory may be used.  Files are loaded in
# order without overriding already-set variables.

_THIS_FILE = Path(__file__).resolve()
_REPO_ROOT = _THIS_FILE.parents[3]
_ROOT_ENV = _REPO_ROOT / ".env"

_candidate_envs: list[str] = []
if _ROOT_ENV.exists():
    _candidate_envs.append(str(_ROOT_ENV))

_FOUND_ENV = find_dotenv(usecwd=True)
if _FOUND_ENV and _FOUND_ENV not in _candidate_envs:
    _candidate_envs.append(_FOUND_ENV)

_LOCAL_ENV = (_THIS_FILE.parent.parent.parent / ".env").as_posix()
if os.path.exists(_LOCAL_ENV) and _LOCAL_ENV not in _candidate_envs:
    _candidate_envs.append(_LOCAL_ENV)

for _env_path in _candidate_envs:
    load_dotenv(dotenv_path=_env_path, override=False)


class Settings(BaseSettings):
    """Application settings.

    Values are loaded from the environment with sensible defaults.  Any
    attribute defined here can be overridden by setting the corresponding
    environment variable.
    """

    model_config = SettingsConfigDict(
        env_file=tuple(_candidate_envs) if _candidate_envs else (".env",),
        case_sensitive=True,
        extra="allow",
    )

    # API Settings
    API_PREFIX: str = "/api"
    PROJECT_NAME: str = "Fisboard"
    ENVIRONMENT: str = Field(default="development")

    # Database (hosted Postgres in production, SQLite locally)
    DATABASE_URL: str = Field(default="sqlite+aiosqlite:///./fisboard.db")

    # Receipt extraction webhook (n8n workflow)
    N8N_WEBHOOK_URL: Optional[str] = Field(default=None)
    WEBHOOK_TIMEOUT_SECONDS: float = Field(default=300.0)

    # File Upload
    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024  # 10MB
    ALLOWED_UPLOAD_TYPES: list[str] = Field(default=["image/jpeg", "image/jpg", "image/png"])

    # Client cache defaults.  A missing eviction grace keeps idle entries
    # until they are explicitly invalidated.
    CACHE_DEDUPE_WINDOW_SECONDS: float = Field(default=10.0)
    CACHE_RETRY_COUNT: int = Field(default=3)
    CACHE_RETRY_INTERVAL_SECONDS: float = Field(default=5.0)
    CACHE_REFRESH_INTERVAL_SECONDS: Optional[float] = Field(default=300.0)
    CACHE_EVICTION_GRACE_SECONDS: Optional[float] = Field(default=None)
    CACHE_MAX_IDLE_ENTRIES: Optional[int] = Field(default=None)

    # Presentation
    DISPLAY_LOCALE: str = Field(default="tr_TR")
    DISPLAY_CURRENCY: str = Field(default="TRY")

    # CORS
    BACKEND_CORS_ORIGINS: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
    )

    # Sentry
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.0)
    # Optional Sentry release name to tag api events consistently with the frontend
    SENTRY_RELEASE: Optional[str] = Field(default=None)


# Instantiate global settings
settings = Settings()
