import json
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CORS_ORIGINS = ("http://localhost:3000", "http://localhost:5173")


def parse_origins(raw: str | None) -> List[str]:
    """CORS_ORIGINS as a JSON list or comma-separated string; falls back to the local dev origins."""
    raw = (raw or "").strip()
    items: list = []
    if raw.startswith("["):
        try:
            items = json.loads(raw)
        except ValueError:
            items = []
    elif raw:
        items = raw.split(",")
    origins = [o.strip() for o in items if isinstance(o, str) and o.strip()]
    return origins or list(DEFAULT_CORS_ORIGINS)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars", description="Session cookie signing key")

    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="toptake", alias="MONGODB_DB_NAME")

    # arq worker
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # HMAC key shared with the payment processor bridge; empty disables /v1/payments
    payment_webhook_secret: str = Field(default="", alias="PAYMENT_WEBHOOK_SECRET")

    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    cors_origins_raw: str = Field(default=",".join(DEFAULT_CORS_ORIGINS), alias="CORS_ORIGINS")

    @property
    def cors_origins(self) -> List[str]:
        return parse_origins(self.cors_origins_raw)

    # Submissions
    max_content_length: int = Field(default=2000, ge=1)
    late_submit_window_days: int = Field(default=90, ge=1)

    # Credits
    welcome_anonymous_credits: int = Field(default=3, ge=0)
    anonymous_credit_cost: int = Field(default=1, ge=1)
    late_submit_credit_cost: int = Field(default=1, ge=1)
    sneak_peek_credit_cost: int = Field(default=1, ge=1)


@lru_cache
def get_settings() -> Settings:
    return Settings()
