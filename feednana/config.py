# config.py
import logging
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # S3 compatible object storage
    storage_endpoint: Optional[str] = None
    storage_access_key: str = ""
    storage_secret_key: str = ""
    storage_region: str = "us-east-1"
    storage_bucket: str = "feednana"
    file_cdn_url: str = "http://localhost:9000/feednana"
    presigned_url_ttl: int = 3600

    # Redis (session ledger, anon identities, pub/sub)
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0

    database_url: str = "sqlite:///./feednana.db"

    # reCAPTCHA Enterprise; verification is skipped when no api key is set
    recaptcha_api_key: Optional[str] = None
    recaptcha_project_id: Optional[str] = None
    recaptcha_site_key: Optional[str] = None
    recaptcha_min_score: float = 0.15

    jwt_secret: str = "feednana-jwt-secret-key-change-me"

    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    ffmpeg_timeout: int = 60

    # Upload sessions and the reaper
    session_ttl_hours: int = 7 * 24
    stale_session_hours: int = 24
    completed_retention_hours: int = 48
    cleanup_interval_seconds: int = 6 * 60 * 60

    log_level: str = "INFO"

    @property
    def recaptcha_required(self) -> bool:
        return bool(self.recaptcha_api_key)


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Optional[Settings] = None):
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
