from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache


BATCH_POLICIES = ("at_least_one", "all_or_nothing")


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./channel_sync.db",
        alias="DATABASE_URL"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    # ==============================================
    # Outbound transport
    # ==============================================
    transport_timeout_seconds: float = Field(default=30.0, alias="TRANSPORT_TIMEOUT_SECONDS")
    transport_max_retries: int = Field(default=3, alias="TRANSPORT_MAX_RETRIES")
    transport_base_delay_ms: int = Field(default=1000, alias="TRANSPORT_BASE_DELAY_MS")
    transport_max_delay_ms: int = Field(default=10000, alias="TRANSPORT_MAX_DELAY_MS")

    # ==============================================
    # Sync behaviour
    # ==============================================
    # Days ahead to push rates / default availability window
    sync_horizon_days: int = Field(default=365, alias="SYNC_HORIZON_DAYS")

    # "at_least_one": batch succeeds if any unit succeeded
    # "all_or_nothing": batch succeeds only if every unit succeeded
    sync_batch_policy: str = Field(default="at_least_one", alias="SYNC_BATCH_POLICY")

    default_currency: str = Field(default="INR", alias="DEFAULT_CURRENCY")

    # ==============================================
    # Channel endpoints and published rate limits
    # ==============================================
    booking_com_base_url: str = Field(
        default="https://supply-xml.booking.com",
        alias="BOOKING_COM_BASE_URL"
    )
    booking_com_requests_per_minute: int = Field(default=30, alias="BOOKING_COM_REQUESTS_PER_MINUTE")

    agoda_base_url: str = Field(
        default="https://xmlapi.agoda.com",
        alias="AGODA_BASE_URL"
    )
    agoda_requests_per_minute: int = Field(default=30, alias="AGODA_REQUESTS_PER_MINUTE")

    expedia_base_url: str = Field(
        default="https://services.expediapartnercentral.com",
        alias="EXPEDIA_BASE_URL"
    )
    expedia_requests_per_minute: int = Field(default=60, alias="EXPEDIA_REQUESTS_PER_MINUTE")

    # ==============================================
    # Scheduler (runs inside the FastAPI process)
    # ==============================================
    scheduler_enabled: bool = Field(default=False, alias="SCHEDULER_ENABLED")
    scheduler_timezone: str = Field(default="Asia/Kolkata", alias="SCHEDULER_TIMEZONE")
    scheduler_full_sync_hour: int = Field(default=2, alias="SCHEDULER_FULL_SYNC_HOUR")
    scheduler_availability_interval_minutes: int = Field(
        default=30,
        alias="SCHEDULER_AVAILABILITY_INTERVAL_MINUTES"
    )

    @field_validator(
        'transport_max_retries',
        'transport_base_delay_ms',
        'transport_max_delay_ms',
        'sync_horizon_days',
    )
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("value must not be negative")
        return v

    @field_validator(
        'booking_com_requests_per_minute',
        'agoda_requests_per_minute',
        'expedia_requests_per_minute',
        'scheduler_availability_interval_minutes',
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("value must be greater than zero")
        return v

    @field_validator('transport_timeout_seconds')
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("TRANSPORT_TIMEOUT_SECONDS must be greater than zero")
        return v

    @field_validator('sync_batch_policy')
    @classmethod
    def validate_batch_policy(cls, v: str) -> str:
        policy = v.strip().lower()
        if policy not in BATCH_POLICIES:
            raise ValueError(f"SYNC_BATCH_POLICY must be one of {', '.join(BATCH_POLICIES)}")
        return policy

    @field_validator('scheduler_full_sync_hour')
    @classmethod
    def validate_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("SCHEDULER_FULL_SYNC_HOUR must be between 0 and 23")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
