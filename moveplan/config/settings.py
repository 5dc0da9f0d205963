import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_database_url() -> str:
    """Get database URL, using absolute path for SQLite to avoid path resolution issues."""
    db_url = os.getenv("MOVEPLAN_DATABASE_URL", "")
    if db_url:
        logger.info(f"Using MOVEPLAN_DATABASE_URL from environment: {db_url}")
        return db_url

    db_path = Path(__file__).parent.parent.parent / "moveplan.db"
    abs_path = db_path.resolve()
    db_url = f"sqlite:///{abs_path}"
    logger.debug(f"Using default database path: {db_url}")
    return db_url


class Settings(BaseSettings):
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="MOVEPLAN_DATABASE_URL",
    )
    log_level: str = Field(default="INFO", validation_alias="MOVEPLAN_LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="MOVEPLAN_LOG_FILE")
    log_json: bool = Field(default=False, validation_alias="MOVEPLAN_LOG_JSON")
    timezone: str = Field(default="UTC", validation_alias="MOVEPLAN_TIMEZONE")

    # Step estimation and walk sizing
    steps_per_minute: int = Field(default=100, validation_alias="MOVEPLAN_STEPS_PER_MINUTE")
    min_walk_minutes: int = Field(default=15, validation_alias="MOVEPLAN_MIN_WALK_MINUTES")
    max_walk_minutes: int = Field(default=45, validation_alias="MOVEPLAN_MAX_WALK_MINUTES")
    meal_buffer_minutes: int = Field(default=30, validation_alias="MOVEPLAN_MEAL_BUFFER_MINUTES")
    active_start_hour: int = Field(default=7, validation_alias="MOVEPLAN_ACTIVE_START_HOUR")
    active_end_hour: int = Field(default=22, validation_alias="MOVEPLAN_ACTIVE_END_HOUR")

    # Proximity policy (seconds / minutes)
    dedup_window_minutes: int = Field(default=15, validation_alias="MOVEPLAN_DEDUP_WINDOW_MINUTES")
    match_window_seconds: int = Field(default=60, validation_alias="MOVEPLAN_MATCH_WINDOW_SECONDS")
    fallback_window_minutes: int = Field(default=30, validation_alias="MOVEPLAN_FALLBACK_WINDOW_MINUTES")
    slot_bucket_minutes: int = Field(default=5, validation_alias="MOVEPLAN_SLOT_BUCKET_MINUTES")
    consolidation_gap_minutes: int = Field(default=30, validation_alias="MOVEPLAN_CONSOLIDATION_GAP_MINUTES")

    # 0 disables "too close" conflicts
    conflict_buffer_minutes: int = Field(default=0, validation_alias="MOVEPLAN_CONFLICT_BUFFER_MINUTES")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @field_validator("active_start_hour", "active_end_hour")
    @classmethod
    def validate_hour(cls, value: int) -> int:
        if not 0 <= value <= 24:
            raise ValueError(f"Active hour must be within 0-24, got {value}")
        return value

    @field_validator("slot_bucket_minutes", "steps_per_minute", "min_walk_minutes", "max_walk_minutes")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError(f"Value must be positive, got {value}")
        return value


settings = Settings()
