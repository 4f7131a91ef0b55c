from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_SESSION_SECRET = "dev-only-session-secret"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_env: str = Field(default="dev", validation_alias="APP_ENV")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./multigestor.db", validation_alias="DATABASE_URL"
    )
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")

    # sessions
    session_cookie: str = Field(default="sid", validation_alias="SESSION_COOKIE")
    session_ttl_seconds: int = Field(default=604800, validation_alias="SESSION_TTL_SECONDS")  # 7 days
    cookie_secure: bool = Field(default=False, validation_alias="COOKIE_SECURE")
    # signs the flash-message cookie
    session_secret: str = Field(default=DEV_SESSION_SECRET, validation_alias="SESSION_SECRET")

    # credentials / login throttling
    pbkdf2_iters: int = Field(default=200000, ge=1, validation_alias="PBKDF2_ITERS")
    lockout_threshold: int = Field(default=5, ge=1, validation_alias="LOCKOUT_THRESHOLD")
    lockout_seconds: int = Field(default=30 * 60, ge=1, validation_alias="LOCKOUT_SECONDS")

    # signup rejections are padded to this floor plus jitter
    signup_reject_min_seconds: float = Field(default=0.5, ge=0, validation_alias="SIGNUP_REJECT_MIN_SECONDS")
    signup_reject_jitter_seconds: float = Field(
        default=0.1, ge=0, validation_alias="SIGNUP_REJECT_JITTER_SECONDS"
    )

    notes_page_size: int = Field(default=10, ge=1, le=100, validation_alias="NOTES_PAGE_SIZE")

    # logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="text", validation_alias="LOG_FORMAT")  # text|json
    log_dir: str = Field(default="./logs", validation_alias="LOG_DIR")

    admin_bootstrap_email: str = Field(default="", validation_alias="ADMIN_BOOTSTRAP_EMAIL")
    admin_bootstrap_password: str = Field(default="", validation_alias="ADMIN_BOOTSTRAP_PASSWORD")


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
