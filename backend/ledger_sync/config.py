"""Application configuration management."""

from typing import List, Literal, Optional

from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ledger_sync.constants.entity_types import EntityType


class ScheduleDefinition(BaseModel):
    """A periodic sync job, e.g. ``{"name": "nightly", "cron": "0 2 * * *"}``."""
    name: str
    cron: str
    direction: Literal["pull", "push", "both"] = "both"
    entity_types: List[str] = Field(default_factory=lambda: [t.value for t in EntityType], min_length=1)
    lookback_hours: Optional[int] = Field(None, gt=0)
    enabled: bool = True

    @field_validator("cron")
    @classmethod
    def validate_cron(cls, v: str) -> str:
        """Validate cron expression syntax."""
        CronTrigger.from_crontab(v)
        return v

    @field_validator("entity_types")
    @classmethod
    def validate_entity_types(cls, v: List[str]) -> List[str]:
        known = [t.value for t in EntityType]
        unknown = [t for t in v if t not in known]
        if unknown:
            raise ValueError(f"Unknown entity types {unknown}, expected some of {known}")
        return v


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.debug and self.log_level.upper() not in ("TRACE", "VERBOSE"):
            self.log_level = "DEBUG"

    # Database
    database_url: str = "sqlite:///./ledger_sync.db"

    # Security
    secret_key: str = "change-me"
    encryption_key: str = ""
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 1440

    # CORS
    cors_origins: str = "http://localhost:5173"

    # Admin User
    admin_username: str = "admin"
    admin_password: str = "changeme"

    # Application
    debug: bool = False
    log_level: str = "INFO"
    api_v1_str: str = "/api/v1"

    # Remote ledger
    ledger_base_url: str = "https://api.xero.com/api.xro/2.0"
    ledger_token_url: str = "https://identity.xero.com/connect/token"
    ledger_client_id: str = ""
    ledger_client_secret: str = ""
    ledger_tenant_id: str = ""
    ledger_timeout_seconds: float = 30.0
    token_refresh_margin_seconds: int = 300

    # Sync tuning
    sync_page_size: int = 100
    sync_batch_size: int = 50
    sync_max_workers: int = 4
    sync_max_retries: int = 3
    sync_backoff_base_seconds: float = 1.0
    sync_max_backoff_seconds: float = 60.0
    sync_default_retry_after_seconds: float = 5.0
    sync_page_delay_seconds: float = 0.2

    # Scheduling
    scheduler_enabled: bool = False
    sync_schedules: List[ScheduleDefinition] = Field(default_factory=list)

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]


# Global settings instance
settings = Settings()
