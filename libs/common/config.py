from dataclasses import dataclass
from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class GatewayCredentials:
    """Payment gateway credentials for one sales region."""

    region: str
    client_id: str
    client_secret: str
    webhook_id: str


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    DEFAULT_REGION: Literal["us", "eu"] = "us"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Auth (tokens are issued by the identity provider, we only validate them)
    JWT_SECRET: str = "test-jwt-secret"
    JWT_ALGORITHM: str = "HS256"

    # Payment gateway
    PAYMENT_GATEWAY: Literal["paypal", "fake"] = "paypal"
    PAYPAL_MODE: Literal["sandbox", "live"] = "sandbox"
    PAYPAL_US_CLIENT_ID: str = ""
    PAYPAL_US_CLIENT_SECRET: str = ""
    PAYPAL_US_WEBHOOK_ID: str = ""
    PAYPAL_EU_CLIENT_ID: str = ""
    PAYPAL_EU_CLIENT_SECRET: str = ""
    PAYPAL_EU_WEBHOOK_ID: str = ""
    FAKE_GATEWAY_SECRET: str = "fake-gateway-secret"

    # Ledger
    LEDGER_MAX_RETRIES: int = 3
    RESERVATION_TTL_MINUTES: int = 30

    # Background jobs
    REDIS_URL: str = "redis://localhost:6379/0"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v

    @property
    def paypal_base_url(self) -> str:
        if self.PAYPAL_MODE == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"

    def gateway_credentials(self, region: str) -> GatewayCredentials:
        """Return the gateway credentials configured for ``region``."""
        region = getattr(region, "value", region)
        prefix = f"PAYPAL_{region.upper()}_"
        return GatewayCredentials(
            region=region,
            client_id=getattr(self, prefix + "CLIENT_ID", ""),
            client_secret=getattr(self, prefix + "CLIENT_SECRET", ""),
            webhook_id=getattr(self, prefix + "WEBHOOK_ID", ""),
        )


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
