from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TOURBOOK_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = "INFO"
    frontend_url: str = "http://localhost:3000"

    scheduler_enabled: bool = True
    scheduler_startup_delay_seconds: float = Field(default=5.0, ge=0)
    tour_status_interval_seconds: float = Field(default=3600.0, gt=0)
    booking_status_interval_seconds: float = Field(default=3600.0, gt=0)
    expired_booking_interval_seconds: float = Field(default=6 * 3600.0, gt=0)
    pending_booking_ttl_hours: int = Field(default=24, gt=0)

    payment_currency: str = "MAD"
    # Reserved card numbers simulating gateway outcomes.
    declined_card_number: str = "4000000000000002"
    failing_card_number: str = "4000000000000127"


settings = Settings()
