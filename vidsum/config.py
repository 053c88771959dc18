from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    environment: Literal["development", "staging", "production", "test"] = "development"
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./vidsum.db"

    # identity provider shares this secret (HS256)
    jwt_secret: Optional[str] = None

    # Stripe
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_timeout_seconds: float = 10.0
    provider_retries: int = 2

    # checkout redirects
    site_url: str = "http://localhost:3000"
    checkout_success_path: str = "/settings?upgraded=true"
    checkout_cancel_path: str = "/pricing"
    portal_return_path: str = "/settings"

    # plan price ids
    price_basic_id: str = "price_1R1qvqEA8X51ZZ0PgR6R9vDc"
    price_standard_id: str = "price_1R1qoBEA8X51ZZ0PYvGOQKMi"
    price_pro_id: str = "price_1R1qwZEA8X51ZZ0P0rgXMakQ"

    admin_token: Optional[str] = None

    summarizer_url: Optional[str] = None
    summarizer_timeout_seconds: float = 60.0

    def absolute_url(self, path: str) -> str:
        return self.site_url.rstrip("/") + "/" + path.lstrip("/")


@lru_cache
def get_settings() -> Settings:
    return Settings()
