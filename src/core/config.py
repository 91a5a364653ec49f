"""Checkout orchestrator settings, read from the environment and .env."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings.

    Every setting has a development default so the service boots locally
    against the storefront's default service ports.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="checkout-orchestrator", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:3001",
        description="Comma-separated list of allowed CORS origins",
    )

    # Remote services
    checkout_api_url: str = Field(
        default="http://localhost:3005/api/v1/checkout",
        description="Base URL of the checkout service (preview and session endpoints)",
    )
    order_service_url: str = Field(
        default="http://127.0.0.1:3006/api/v1",
        description="Base URL of the order service",
    )
    cart_service_url: str = Field(
        default="http://127.0.0.1:3004/api/v1",
        description="Base URL of the cart service",
    )
    http_timeout_seconds: float = Field(default=10.0, gt=0, description="Timeout for remote service calls")

    # Retry
    retry_max_attempts: int = Field(default=3, ge=1, description="Total attempts for retried remote calls")
    retry_base_delay_ms: int = Field(default=1000, ge=0, description="Base delay for exponential backoff")

    # Checkout flow timing
    persist_debounce_ms: int = Field(default=300, ge=0, description="Window for coalescing state writes")
    inventory_check_delay_ms: int = Field(default=800, ge=0, description="Duration of the inventory check phase")
    completion_redirect_delay_ms: int = Field(
        default=1000,
        ge=0,
        description="How long the completed phase stays visible before the redirect",
    )

    # Checkout state storage
    checkout_storage_backend: Literal["memory", "file", "supabase"] = Field(
        default="memory",
        description="Where checkout snapshots are persisted",
    )
    checkout_storage_dir: str = Field(default=".checkout_state", description="Directory used by the file backend")
    checkout_storage_table: str = Field(default="checkout_storage", description="Table used by the supabase backend")

    # Supabase
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_secret_key: str = Field(default="", description="Supabase secret key for backend operations")

    # Auth
    jwt_signing_key_jwk: str = Field(default="", description="Signing key JWK (JSON string) for JWT verification")
    jwt_algorithms: str = Field(default="ES256", description="Comma-separated list of accepted JWT algorithms")

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_currency: str = Field(default="usd", description="Currency used for payment intents")

    # Frontend
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Storefront URL used for redirects",
    )
    login_path: str = Field(default="/login?redirect=/checkout", description="Storefront login redirect path")

    @model_validator(mode="after")
    def check_storage_backend(self) -> "Settings":
        """Require Supabase credentials when the supabase storage backend is selected."""
        if self.checkout_storage_backend == "supabase" and not (self.supabase_url and self.supabase_secret_key):
            raise ValueError("SUPABASE_URL and SUPABASE_SECRET_KEY are required for the supabase storage backend")
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def jwt_algorithms_list(self) -> list[str]:
        """Parse accepted JWT algorithms into a list."""
        return [alg.strip() for alg in self.jwt_algorithms.split(",") if alg.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_stripe_configured(self) -> bool:
        """Check if real payment confirmation is available."""
        return bool(self.stripe_secret_key)

    @property
    def login_url(self) -> str:
        """Absolute storefront login URL."""
        return f"{self.frontend_url.rstrip('/')}{self.login_path}"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings; tests call ``cache_clear()`` to reload."""
    return Settings()
