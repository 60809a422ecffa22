from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    if v is None or v == "":
        return _DEFAULT_CORS.copy()
    if isinstance(v, list):
        return [x for x in v if isinstance(x, str) and x.strip()]
    s = str(v).strip()
    if s.startswith("["):
        import json
        try:
            out = json.loads(s)
        except ValueError:
            return _DEFAULT_CORS.copy()
        return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
    return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")
    admin_api_key: str = Field(default="", alias="ADMIN_API_KEY")

    # Card tokens (Fernet key, base64); derived from secret_key when unset
    card_token_key: str = Field(default="", alias="CARD_TOKEN_KEY")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="storefront", alias="MONGODB_DB_NAME")

    # Redis (ARQ queue + carts)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Payment gateway
    gateway_base_url: str = Field(default="https://api.fastsoftbrasil.com/api/user", alias="GATEWAY_BASE_URL")
    gateway_public_key: str = Field(default="", alias="GATEWAY_PUBLIC_KEY")
    gateway_secret_key: str = Field(default="", alias="GATEWAY_SECRET_KEY")
    gateway_timeout_seconds: float = Field(default=30.0, alias="GATEWAY_TIMEOUT_SECONDS")
    gateway_max_attempts: int = Field(default=3, alias="GATEWAY_MAX_ATTEMPTS")
    gateway_backoff_seconds: float = Field(default=1.0, alias="GATEWAY_BACKOFF_SECONDS")
    webhook_secret: str = Field(default="", alias="WEBHOOK_SECRET")
    postback_url: str | None = Field(default=None, alias="POSTBACK_URL")

    # Checkout
    currency: str = "BRL"
    pix_expires_in_days: int = 1
    boleto_expires_in_days: int = 3
    max_installments: int = 12
    installment_interest_rate: float = 0.0  # annual %, 0 = interest free

    # Reconciliation poller
    poll_interval_seconds: float = Field(default=30.0, alias="POLL_INTERVAL_SECONDS")
    poll_max_attempts: int = Field(default=60, alias="POLL_MAX_ATTEMPTS")

    # Notifications
    notification_relay_url: str | None = Field(default=None, alias="NOTIFICATION_RELAY_URL")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))


@lru_cache
def get_settings() -> Settings:
    return Settings()
