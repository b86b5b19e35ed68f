from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./loyalbridge.db"

    # Square configuration
    square_access_token: str = ""
    square_api_version: str = "2024-10-17"
    square_loyalty_program_id: str = "main"
    square_location_id: str | None = None
    # Fallback when app_settings has no square_environment row
    square_default_environment: Literal["sandbox", "production"] = "sandbox"
    square_production_base_url: str = "https://connect.squareup.com"
    square_sandbox_base_url: str = "https://connect.squareupsandbox.com"

    # Shopify configuration
    shopify_store_url: str = ""
    shopify_access_token: str = ""
    shopify_api_version: str = "2024-10"
    shopify_webhook_secret: str = ""

    # Outbound HTTP
    http_timeout_seconds: float = 10.0

    # Redemption behaviour
    discount_code_prefix: str = "SQ-"
    promotion_code_prefix: str = "PROMO-"
    discount_validity_days: int = 30
    points_per_currency_unit: float = 1.0

    # Internal API security
    admin_api_key: str = ""

    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _parse_origin_list(cls, value: object) -> list[str]:
        if value is None:
            return ["*"]
        if isinstance(value, str):
            origins = [item.strip() for item in value.split(",") if item.strip()]
            return origins or ["*"]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return ["*"]

    @field_validator("shopify_store_url", mode="after")
    @classmethod
    def _strip_store_url(cls, value: str) -> str:
        cleaned = value.strip()
        for prefix in ("https://", "http://"):
            if cleaned.startswith(prefix):
                cleaned = cleaned[len(prefix):]
        return cleaned.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
