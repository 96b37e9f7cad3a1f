from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_DEFAULT_RETAILER_DOMAINS = [
    "amazon.com",
    "amazon.co.uk",
    "amazon.de",
    "amazon.fr",
    "amazon.it",
    "amazon.es",
    "amazon.ca",
    "amazon.com.au",
    "amazon.co.jp",
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./giftbridge.db"
    database_echo: bool = False
    log_level: str = "INFO"

    # HTTP server
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Internal API security
    checkout_api_key: str = ""
    inventory_admin_api_key: str = ""

    # Checkout sessions
    session_expiry_minutes: int = 15
    max_amount_cents: int = 1_000_000
    approved_retailer_domains: list[str] = Field(default_factory=lambda: list(_DEFAULT_RETAILER_DOMAINS))
    metadata_max_bytes: int = 10_000

    @field_validator("approved_retailer_domains", mode="before")
    @classmethod
    def _parse_domain_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip().lower() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip().lower() for item in value if str(item).strip()]
        return []

    # Gift code inventory
    gift_code_prefix: str = "AMAZON-GIFT-CODE-"
    gift_code_suffix_length: int = 6
    gift_code_default_ttl_days: int = 365

    # Tracing
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    tracing_console_export: bool = False

    # Expiry sweep worker
    expiry_sweep_worker_enabled: bool = False
    expiry_sweep_interval_seconds: int = 60


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
