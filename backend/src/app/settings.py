"""Application settings and configuration."""

from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "poolvest"
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"  # console or json
    allowed_origins: str = "http://localhost:3000"

    # Database
    database_url: str = "sqlite:///./poolvest.db"

    # Referral codes
    referral_code_length: int = Field(default=8, ge=4, le=20)
    referral_growth_window_days: int = Field(default=7, gt=0)
    referral_check_rate_limit: str = "30/minute"

    # Commission policy: level 1 earns base_rate, each level above earns
    # decay times the level below, until the rate drops under min_rate.
    commission_base_rate: Decimal = Field(default=Decimal("0.10"), gt=0, le=1)
    commission_decay: Decimal = Field(default=Decimal("0.10"), gt=0, lt=1)
    commission_min_rate: Decimal = Field(default=Decimal("0.00001"), gt=0)
    commission_partial_credit: bool = True  # Keep levels credited before a failure
    max_amount: Decimal = Field(default=Decimal("1000000000000"), gt=0)  # Investments and settled commissions

    # Rate limiting
    rate_limit_default: str = "200/minute"
    rate_limit_storage_uri: str = "memory://"

    # KYC
    default_phone_region: str = "US"


# Global settings instance
settings = Settings()
