# clinic_scheduler/config/settings.py

from datetime import time
from decimal import Decimal
from functools import lru_cache
from typing import Optional
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class SchedulingConfig(BaseModel):
    """Immutable knobs handed to every engine component"""

    business_hours_start: time = time(9, 0)
    business_hours_end: time = time(19, 0)
    default_slot_minutes: int = Field(50, gt=0)
    default_timezone: str = "America/Bogota"

    # No built-in value: the fee fallback must come from deployment config.
    platform_default_fee: Decimal = Field(..., ge=0)
    currency: str = Field("COP", min_length=3, max_length=3)

    reminder_lookahead_hours: float = Field(25, gt=0)
    reminder_lead_hours: float = Field(24, gt=0)
    reminder_channel: str = "whatsapp"
    min_cancellation_notice_hours: float = Field(3, ge=0)

    survey_delay_hours: float = Field(2, ge=0)
    survey_alert_threshold: float = Field(3.0, ge=1, le=5)

    clinic_name: str = "Clinic"

    model_config = {"frozen": True}


class Settings(BaseSettings):
    database_url: str = "sqlite:///./clinic.db"
    storage_timeout_seconds: float = 5.0

    api_version: str = "1.0.0"
    api_title: str = "Clinic Scheduling Engine"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    allowed_origins: str = "http://localhost:3000,http://localhost:5173"
    debug: bool = False
    log_level: str = "info"

    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0
    redis_max_connections: int = 20
    redis_socket_timeout: int = 2
    redis_socket_connect_timeout: int = 2
    availability_cache_enabled: bool = False
    availability_cache_ttl: int = 60

    business_hours_start: time = time(9, 0)
    business_hours_end: time = time(19, 0)
    default_slot_minutes: int = 50
    default_timezone: str = "America/Bogota"
    platform_default_fee: Decimal
    currency: str = "COP"
    reminder_lookahead_hours: float = 25
    reminder_lead_hours: float = 24
    reminder_channel: str = "whatsapp"
    min_cancellation_notice_hours: float = 3
    survey_delay_hours: float = 2
    survey_alert_threshold: float = 3.0
    clinic_name: str = "Clinic"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra='ignore'
    )

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: str) -> str:
        return value.upper()

    def scheduling_config(self) -> SchedulingConfig:
        return SchedulingConfig(
            business_hours_start=self.business_hours_start,
            business_hours_end=self.business_hours_end,
            default_slot_minutes=self.default_slot_minutes,
            default_timezone=self.default_timezone,
            platform_default_fee=self.platform_default_fee,
            currency=self.currency,
            reminder_lookahead_hours=self.reminder_lookahead_hours,
            reminder_lead_hours=self.reminder_lead_hours,
            reminder_channel=self.reminder_channel,
            min_cancellation_notice_hours=self.min_cancellation_notice_hours,
            survey_delay_hours=self.survey_delay_hours,
            survey_alert_threshold=self.survey_alert_threshold,
            clinic_name=self.clinic_name,
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
