# app/core/config.py
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized application settings loaded from environment.

    Required env vars (.env):
      - SUPABASE_URL
      - SUPABASE_KEY (anon key)
      - DATABASE_URL (Supabase Postgres connection string)
      - SUPABASE_JWT_SECRET (JWT signing secret from Supabase project settings)

    Optional:
      - SUPABASE_SERVICE_ROLE_KEY (admin Supabase client + scheduler auth)
      - CHECKOUT_ABANDON_MINUTES / CHECKOUT_EXPIRE_HOURS (sweep thresholds)
    """

    PROJECT_NAME: str = "Checkout Sessions API"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Storefronts live on arbitrary domains, so CORS is open by default
    CORS_ORIGINS: list[str] = ["*"]

    # Supabase / DB config
    SUPABASE_URL: str
    SUPABASE_KEY: str
    DATABASE_URL: str

    # JWT verification (backend-side)
    SUPABASE_JWT_SECRET: str
    SUPABASE_JWT_ALG: str = "HS256"

    # Service role key bypasses RLS (backend only)
    SUPABASE_SERVICE_ROLE_KEY: str | None = None

    # Platform subdomains look like "{slug}.<PLATFORM_STORE_DOMAIN>"
    PLATFORM_STORE_DOMAIN: str = "shops.comandocentral.com.br"

    # Abandonment sweep
    CHECKOUT_ABANDON_MINUTES: int = 30
    CHECKOUT_EXPIRE_HOURS: int = 24
    ABANDON_SWEEP_BATCH_SIZE: int = 100

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings loader.
    Ensures we don't re-parse .env on every import / request.
    """
    return Settings()
