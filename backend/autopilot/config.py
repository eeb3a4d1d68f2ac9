import logging
from pydantic_settings import BaseSettings
from pydantic import model_validator, ConfigDict
from functools import lru_cache

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment: "development" or "production"
    environment: str = "development"

    database_url: str = "postgresql+asyncpg://localhost/campaign_autopilot"
    database_ssl: bool = False  # Hosted Postgres behind a TLS proxy
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_connect_timeout: float = 30.0

    @model_validator(mode="before")
    @classmethod
    def _fix_database_url_for_asyncpg(cls, values: dict) -> dict:
        """Hosted Postgres gives postgresql://; asyncpg needs postgresql+asyncpg://."""
        if not isinstance(values, dict):
            return values
        url = values.get("database_url") or ""
        if url.startswith("postgresql://") and "+asyncpg" not in url:
            values["database_url"] = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return values

    secret_key: str = "change-me-in-production"
    api_key: str = ""  # Required in production; in dev, empty = operator auth disabled
    cors_origins: str = "http://localhost:5173,http://localhost:3000"
    encryption_key: str = ""
    cron_secret: str = ""

    # Meta Graph API (platform adapter)
    meta_graph_version: str = "v21.0"
    meta_system_user_token: str = ""  # Fallback when a business has no token of its own
    meta_timeout_seconds: float = 30.0

    # Budget guardrails, in minor currency units (cents)
    min_daily_budget_cents: int = 500
    default_max_daily_budget_cents: int = 10_000

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":
        """Enforce that critical secrets are set when running in production."""
        if self.default_max_daily_budget_cents < self.min_daily_budget_cents:
            raise ValueError(
                "DEFAULT_MAX_DAILY_BUDGET_CENTS must be greater than or equal to MIN_DAILY_BUDGET_CENTS."
            )
        if self.is_production:
            if self.secret_key == "change-me-in-production":
                raise ValueError(
                    "SECRET_KEY must be set to a secure value in production. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
            if not self.api_key:
                raise ValueError(
                    "API_KEY must be set in production. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
            if not self.encryption_key:
                raise ValueError(
                    "ENCRYPTION_KEY must be set in production. "
                    "Generate one with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
                )
            if not self.database_url or "localhost" in self.database_url:
                logger.warning("DATABASE_URL appears to point at localhost in production.")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origin_list(self) -> list[str]:
        origins = [o.strip() for o in self.cors_origins.split(",") if o.strip()]
        return origins or ["http://localhost:5173", "http://localhost:3000"]

    @property
    def meta_graph_base(self) -> str:
        return f"https://graph.facebook.com/{self.meta_graph_version}"


@lru_cache
def get_settings() -> Settings:
    return Settings()
