"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the Check-In API happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. database_url -> DATABASE_URL). Type coercion and validation are
      built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Used to keep the default page size inside the page size cap.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
listing/, or records/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("checkin.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'checkin.db'}"

# Pagination contract. A limit above MAX_PAGE_SIZE is rejected, never clamped.
DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100

# Reports page through larger result sets than the listings.
MAX_REPORT_PAGE_SIZE = 1000

# Fiscal-year filter bounds: [MIN_FISCAL_YEAR, current year + FISCAL_YEAR_LOOKAHEAD].
MIN_FISCAL_YEAR = 1900
FISCAL_YEAR_LOOKAHEAD = 10

# Range of a signed 64-bit database integer. Client integers outside it are
# rejected as malformed, as PHP's FILTER_VALIDATE_INT did beyond PHP_INT_MAX.
MIN_DB_INT = -(2**63)
MAX_DB_INT = 2**63 - 1


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # Seconds the active-credential list may be served from memory.
    # 0 disables the cache; every request then reads the store.
    # A key revoked from another process stays usable for at most this long.
    credential_cache_ttl: int = 15

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    default_page_size: int = DEFAULT_PAGE_SIZE
    max_page_size: int = MAX_PAGE_SIZE

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    listing_rate_limit: str = "60/minute"
    write_rate_limit: str = "30/minute"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_page_sizes(self) -> "Settings":
        """Keep the configured default page size inside [1, max_page_size].

        A default larger than the cap would make every request that omits
        ?limit= fail validation, so it is refused at startup instead.
        """
        if self.max_page_size < 1:
            raise ValueError("MAX_PAGE_SIZE must be at least 1.")
        if not 1 <= self.default_page_size <= self.max_page_size:
            raise ValueError(f"DEFAULT_PAGE_SIZE must be between 1 and MAX_PAGE_SIZE ({self.max_page_size}).")
        if self.credential_cache_ttl < 0:
            raise ValueError("CREDENTIAL_CACHE_TTL cannot be negative.")
        if self.credential_cache_ttl == 0:
            logger.info("Credential cache disabled (CREDENTIAL_CACHE_TTL=0)")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
