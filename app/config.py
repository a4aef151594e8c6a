"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys
from dataclasses import dataclass

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


@dataclass(frozen=True)
class DigistoreConfig:
    """Payment processor settings handed to the IPN verifier and checkout builder."""

    vendor_id: str
    ipn_passphrase: str
    checkout_base_url: str
    frontend_url: str

    @property
    def missing_settings(self) -> list[str]:
        missing = []
        if not self.vendor_id:
            missing.append("DIGISTORE_VENDOR_ID")
        if not self.ipn_passphrase:
            missing.append("DIGISTORE_IPN_PASSPHRASE")
        return missing


@dataclass(frozen=True)
class MediaStoreConfig:
    """Credentials for the hosted media API."""

    cloud_name: str
    api_key: str
    api_secret: str
    timeout_seconds: float

    @property
    def is_configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    auto_migrate: bool = False  # Apply pending migrations at startup

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 5000
    api_title: str = "Studio Access API"
    api_version: str = "0.1.0"
    api_description: str = "Class and course access with payment reconciliation"
    cors_origins: str = "http://localhost:5173"  # Comma-separated

    # Authentication
    jwt_secret: str = ""  # generate with: openssl rand -hex 32
    jwt_expire_hours: int = 24 * 7

    # Payment Processor - Digistore24
    digistore_vendor_id: str = ""
    digistore_ipn_passphrase: str = ""  # Empty disables IPN processing (fail closed)
    digistore_checkout_base_url: str = "https://www.digistore24.com/product"
    frontend_url: str = "http://localhost:5173"

    # Media Host - Cloudinary
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    media_store_timeout_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "studio-access-api"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        Payment and media credentials may be absent (those features then
        refuse to operate), but the database and token signing may not.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if not self.jwt_secret:
            errors.append("JWT_SECRET is required but empty or missing")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url

    @property
    def allowed_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def digistore_config(self) -> DigistoreConfig:
        return DigistoreConfig(
            vendor_id=self.digistore_vendor_id,
            ipn_passphrase=self.digistore_ipn_passphrase,
            checkout_base_url=self.digistore_checkout_base_url.rstrip("/"),
            frontend_url=self.frontend_url.rstrip("/"),
        )

    def media_store_config(self) -> MediaStoreConfig:
        return MediaStoreConfig(
            cloud_name=self.cloudinary_cloud_name,
            api_key=self.cloudinary_api_key,
            api_secret=self.cloudinary_api_secret,
            timeout_seconds=self.media_store_timeout_seconds,
        )


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
