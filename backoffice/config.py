# backoffice/config.py - Environment-driven configuration
from dotenv import load_dotenv

load_dotenv()
from typing import List, Union
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Back-office settings with validation and environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="allow",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Application
    app_name: str = "Clinic Back-Office"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # Database
    database_url: str = Field(default="sqlite:///./backoffice.db", alias="DATABASE_URL")

    # Security
    secret_key: str = Field(default="dev-secret-key-change-me-please-0123456789", alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Scheduling
    clinic_timezone: str = Field(default="America/Sao_Paulo", alias="CLINIC_TIMEZONE")
    default_appointment_duration: int = Field(default=30, alias="DEFAULT_APPOINTMENT_DURATION")
    min_appointment_duration: int = Field(default=15, alias="MIN_APPOINTMENT_DURATION")
    max_appointment_duration: int = Field(default=120, alias="MAX_APPOINTMENT_DURATION")

    # Billing
    payment_exempt_appointment_types: Union[str, List[str]] = Field(
        default=["Retorno"], alias="PAYMENT_EXEMPT_APPOINTMENT_TYPES"
    )
    receivables_default_window_days: int = Field(default=30, alias="RECEIVABLES_DEFAULT_WINDOW_DAYS")
    receivables_default_limit: int = Field(default=50, alias="RECEIVABLES_DEFAULT_LIMIT")
    receivables_max_limit: int = Field(default=200, alias="RECEIVABLES_MAX_LIMIT")

    @field_validator("payment_exempt_appointment_types", mode="before")
    @classmethod
    def parse_exempt_types(cls, v):
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        if not v.startswith(("postgresql://", "postgresql+psycopg2://", "postgresql+psycopg://", "sqlite://")):
            raise ValueError("DATABASE_URL must be a valid PostgreSQL or SQLite URL")
        return v

    @field_validator("clinic_timezone")
    @classmethod
    def validate_clinic_timezone(cls, v):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"CLINIC_TIMEZONE '{v}' is not a known IANA timezone")
        return v

    @field_validator("max_appointment_duration")
    @classmethod
    def validate_duration_bounds(cls, v, info):
        minimum = info.data.get("min_appointment_duration", 1)
        if v < minimum:
            raise ValueError("MAX_APPOINTMENT_DURATION must not be lower than MIN_APPOINTMENT_DURATION")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
