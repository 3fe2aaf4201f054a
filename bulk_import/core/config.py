from typing import Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings
import logging

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)


class Settings(BaseSettings):
    """Centralized configuration management with validation and defaults."""

    # Environment
    environment: str = "development"
    log_level: str = "info"

    # Storage
    storage_path: str = "./storage"

    # Archive sessions
    max_archive_size_mb: int = 500
    archive_session_max_age_seconds: int = 24 * 3600
    max_archive_sessions: int = 100

    # URL crawl sessions
    crawl_session_ttl_seconds: int = 3600
    session_sweep_interval_seconds: int = 300

    # Remote fetching
    fetch_timeout_seconds: float = 30.0
    max_redirects: int = 3
    max_images_per_page: int = 500
    max_page_size_mb: int = 10
    max_image_size_mb: int = 50
    resolve_hostnames: bool = True
    user_agent: str = DEFAULT_USER_AGENT

    # Thumbnails
    thumbnail_size: int = 300
    thumbnail_quality: int = 80

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        allowed = ['development', 'testing', 'staging', 'production']
        if v.lower() not in allowed:
            raise ValueError(f'Environment must be one of {allowed}')
        return v.lower()

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        allowed = ['debug', 'info', 'warning', 'error', 'critical']
        if v.lower() not in allowed:
            raise ValueError(f'Log level must be one of {allowed}')
        return v.lower()

    @field_validator('max_archive_size_mb', 'max_page_size_mb', 'max_image_size_mb')
    @classmethod
    def validate_size_limits(cls, v):
        if v < 1:
            raise ValueError('Size limits must be at least 1MB')
        return v

    @field_validator('crawl_session_ttl_seconds', 'archive_session_max_age_seconds',
                     'session_sweep_interval_seconds')
    @classmethod
    def validate_durations(cls, v):
        if v <= 0:
            raise ValueError('Session durations must be positive')
        return v

    @field_validator('fetch_timeout_seconds')
    @classmethod
    def validate_fetch_timeout(cls, v):
        if v <= 0 or v > 300:
            raise ValueError('Fetch timeout must be between 0 and 300 seconds')
        return v

    @field_validator('max_redirects')
    @classmethod
    def validate_max_redirects(cls, v):
        if v < 0 or v > 10:
            raise ValueError('Max redirects must be between 0 and 10')
        return v

    @field_validator('thumbnail_quality')
    @classmethod
    def validate_thumbnail_quality(cls, v):
        if v < 1 or v > 95:
            raise ValueError('Thumbnail quality must be between 1 and 95')
        return v

    @property
    def max_archive_size_bytes(self) -> int:
        """Get maximum archive upload size in bytes."""
        return self.max_archive_size_mb * 1024 * 1024

    @property
    def max_page_size_bytes(self) -> int:
        return self.max_page_size_mb * 1024 * 1024

    @property
    def max_image_size_bytes(self) -> int:
        return self.max_image_size_mb * 1024 * 1024

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
        logger.info(f"Configuration loaded for environment: {_settings.environment}")
    return _settings


def validate_configuration() -> bool:
    """Validate configuration values and log warnings for risky combinations."""
    settings = get_settings()

    warnings = []

    if settings.environment == "production" and not settings.resolve_hostnames:
        warnings.append("RESOLVE_HOSTNAMES disabled in production; DNS-based SSRF checks are off")

    if settings.session_sweep_interval_seconds > settings.crawl_session_ttl_seconds:
        warnings.append("Session sweep interval exceeds the crawl session TTL")

    for warning in warnings:
        logger.warning(warning)

    return len(warnings) == 0
