from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")
    db_echo: bool = Field(False, alias="DB_ECHO")
    db_pool_recycle_seconds: int = Field(300, alias="DB_POOL_RECYCLE_SECONDS")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Replayed responses are served for this long after the first successful save.
    idempotency_ttl_hours: int = Field(24, alias="IDEMPOTENCY_TTL_HOURS")
    absence_alert_threshold: int = Field(4, alias="ABSENCE_ALERT_THRESHOLD")

    # Client-side draft cache (teacher session)
    draft_debounce_seconds: float = Field(0.8, alias="DRAFT_DEBOUNCE_SECONDS")
    draft_cache_dir: str = Field(".feed_drafts", alias="DRAFT_CACHE_DIR")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    api_base_url: Optional[str] = Field(None, alias="API_BASE_URL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
