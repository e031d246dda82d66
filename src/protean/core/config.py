"""Runtime configuration for Protean."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field

DEFAULT_DATABASE_URL = "sqlite:///./protean.db"


def get_database_url(url: str | None = None) -> str:
    """Resolve database URL from argument, environment variable, or default.

    Priority:
    1. Explicit URL argument
    2. PROTEAN_URL environment variable
    3. Default: sqlite:///./protean.db
    """
    if url:
        return url
    if env_url := os.getenv("PROTEAN_URL"):
        return env_url
    return DEFAULT_DATABASE_URL


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Store-wide policy knobs."""

    database_url: str = DEFAULT_DATABASE_URL
    echo: bool = False

    # Reject unknown attribute keys on write (False drops them with a warning)
    strict_attributes: bool = True

    # Option resolver title cache; entries expire, writes do not invalidate them
    title_cache_ttl_seconds: float = Field(default=300.0, ge=0)

    default_page_size: int = Field(default=20, ge=1)
    max_page_size: int = Field(default=100, ge=1)

    @classmethod
    def from_env(cls, database_url: str | None = None) -> Settings:
        """Build settings from PROTEAN_* environment variables."""
        defaults = cls()
        return cls(
            database_url=get_database_url(database_url),
            echo=_env_bool("PROTEAN_ECHO", defaults.echo),
            strict_attributes=_env_bool("PROTEAN_STRICT_ATTRIBUTES", defaults.strict_attributes),
            title_cache_ttl_seconds=float(
                os.getenv("PROTEAN_TITLE_CACHE_TTL", defaults.title_cache_ttl_seconds)
            ),
            default_page_size=int(
                os.getenv("PROTEAN_DEFAULT_PAGE_SIZE", defaults.default_page_size)
            ),
            max_page_size=int(os.getenv("PROTEAN_MAX_PAGE_SIZE", defaults.max_page_size)),
        )
