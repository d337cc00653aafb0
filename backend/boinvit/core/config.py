"""Application configuration"""

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "Boinvit API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Database
    # WHY: Supabase exposes a regular Postgres connection string; the app
    # talks to it directly with async SQLAlchemy instead of the REST layer.
    DATABASE_URL: str

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Supabase
    # WHY: The frontend build uses VITE_ prefixed names; accepting both lets
    # the backend share the same .env file.
    SUPABASE_URL: str = Field(
        default="",
        validation_alias=AliasChoices("SUPABASE_URL", "VITE_SUPABASE_URL"),
    )
    SUPABASE_ANON_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("SUPABASE_ANON_KEY", "VITE_SUPABASE_ANON_KEY"),
    )
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    SUPABASE_JWT_SECRET: str
    SUPABASE_JWT_AUDIENCE: str = "authenticated"
    JWT_ALGORITHM: str = "HS256"

    # Paystack
    PAYSTACK_SECRET_KEY: Optional[str] = None
    PAYSTACK_WEBHOOK_SECRET: Optional[str] = None
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_TIMEOUT_SECONDS: float = 30.0

    # Webhook protection
    WEBHOOK_RATE_LIMIT_REQUESTS: int = 30
    WEBHOOK_RATE_LIMIT_WINDOW_SECONDS: int = 60
    WEBHOOK_REPLAY_WINDOW_SECONDS: int = 300  # 5 minutes

    # Mobile money reconciliation
    PAYMENT_RECONCILE_INTERVAL_SECONDS: int = 60
    PAYMENT_STATUS_MAX_CHECKS: int = 10
    # GET /payments/mpesa/{reference}/status?wait=true
    PAYMENT_STATUS_WAIT_ATTEMPTS: int = 6
    PAYMENT_STATUS_WAIT_DELAY_SECONDS: float = 2.0

    # Dashboard cache
    DASHBOARD_CACHE_TTL_SECONDS: int = 300

    # Background services
    REALTIME_ENABLED: bool = False
    SCHEDULER_ENABLED: bool = True

    # URLs
    FRONTEND_URL: str = "http://localhost:5173"

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://localhost:8080",
        "http://127.0.0.1:5173",
    ]

    @property
    def paystack_enabled(self) -> bool:
        """Check if Paystack API calls can be made."""
        return bool(self.PAYSTACK_SECRET_KEY)

    @property
    def async_database_url(self) -> str:
        """Get async database URL"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")


settings = Settings()
