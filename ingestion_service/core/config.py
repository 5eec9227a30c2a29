"""
ingestion_service/core/config.py
Configuration management using Pydantic Settings
"""

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_PORT = 5000
DEFAULT_API_PREFIX = "/api/v1/"
DEFAULT_DATABASE_URL = "mongodb://mongo:27017/prj"


class Settings(BaseSettings):
    """
    Ingestion Service Configuration
    Environment variables can override these defaults
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore"
    )

    # ========================================================================
    # Server Settings
    # ========================================================================
    PORT: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    HOST: str = "0.0.0.0"
    API_PREFIX: str = DEFAULT_API_PREFIX
    NODE_ENV: str = "development"
    STARTUP_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)

    # ========================================================================
    # Storage Settings
    # ========================================================================
    DATABASE_URL: str = DEFAULT_DATABASE_URL
    DOCKER_ENV: bool = False
    DOCKER_DATABASE_URL: Optional[str] = None
    STORAGE_TIMEOUT_MS: int = Field(default=30000, ge=1)

    # ========================================================================
    # Cache Warm-up Settings
    # ========================================================================
    CACHE_ON_STARTUP: bool = False
    WARMUP_TIMEOUT_SECONDS: float = Field(default=300.0, gt=0)

    # ========================================================================
    # Pipeline Policy
    # ========================================================================
    RATE_LIMIT_WINDOW_MS: int = Field(default=1000, ge=1)
    RATE_LIMIT_MAX: int = Field(default=5, ge=1)
    MAX_BODY_BYTES: int = Field(default=100 * 1024 * 1024, ge=1)  # 100MB
    COMPRESSION_MIN_SIZE: int = Field(default=1024, ge=0)
    CORS_ORIGINS: str = "*"
    FORWARDED_ALLOW_IPS: str = "127.0.0.1"

    # ========================================================================
    # Logging / Monitoring Settings
    # ========================================================================
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_FORMAT: Literal["json", "console"] = "json"
    FAULT_POLICY: Literal["warn", "exit"] = "warn"
    METRICS_ENABLED: bool = True

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


class Environment(str, Enum):
    """Deployment environment as far as the bootstrap layer cares."""
    PRODUCTION = "production"
    OTHER = "other"


class ServiceConfig(BaseModel):
    """
    Runtime parameters resolved once at startup.

    Frozen: the startup sequencer owns it for the lifetime of the process.
    """
    model_config = ConfigDict(frozen=True)

    listen_port: int = Field(ge=0, le=65535)
    host: str = "0.0.0.0"
    api_prefix: str = DEFAULT_API_PREFIX
    storage_url: str = DEFAULT_DATABASE_URL
    environment: Environment = Environment.OTHER
    cache_warmup_enabled: bool = False

    rate_limit_window_ms: int = 1000
    rate_limit_max: int = 5
    max_body_bytes: int = 100 * 1024 * 1024
    compression_min_size: int = 1024
    cors_origins: tuple = ("*",)
    forwarded_allow_ips: str = "127.0.0.1"
    metrics_enabled: bool = True
    fault_policy: Literal["warn", "exit"] = "warn"

    storage_timeout_ms: int = 30000
    warmup_timeout_seconds: float = 300.0
    startup_timeout_seconds: float = 30.0

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def docs_enabled(self) -> bool:
        """Interactive API docs are served everywhere except production."""
        return not self.is_production

    @property
    def self_url(self) -> str:
        """Base URL the service uses to call itself."""
        return f"http://localhost:{self.listen_port}"


def normalize_prefix(prefix: str) -> str:
    """Make sure the API prefix starts and ends with a single slash."""
    stripped = prefix.strip().strip("/")
    if not stripped:
        return "/"
    return f"/{stripped}/"


def resolve_config(port: Optional[int] = None, settings: Optional[Settings] = None) -> ServiceConfig:
    """
    Build the immutable ServiceConfig.

    Port precedence: explicit argument > PORT > 5000.
    The Docker storage URL wins only when DOCKER_ENV is true and
    DOCKER_DATABASE_URL is set.
    """
    settings = settings or get_settings()

    storage_url = settings.DATABASE_URL
    if settings.DOCKER_ENV and settings.DOCKER_DATABASE_URL:
        storage_url = settings.DOCKER_DATABASE_URL

    environment = (
        Environment.PRODUCTION if settings.NODE_ENV == "production" else Environment.OTHER
    )

    return ServiceConfig(
        listen_port=port if port is not None else settings.PORT,
        host=settings.HOST,
        api_prefix=normalize_prefix(settings.API_PREFIX),
        storage_url=storage_url,
        environment=environment,
        cache_warmup_enabled=settings.CACHE_ON_STARTUP,
        rate_limit_window_ms=settings.RATE_LIMIT_WINDOW_MS,
        rate_limit_max=settings.RATE_LIMIT_MAX,
        max_body_bytes=settings.MAX_BODY_BYTES,
        compression_min_size=settings.COMPRESSION_MIN_SIZE,
        cors_origins=tuple(settings.cors_origins_list) or ("*",),
        forwarded_allow_ips=settings.FORWARDED_ALLOW_IPS,
        metrics_enabled=settings.METRICS_ENABLED,
        fault_policy=settings.FAULT_POLICY,
        storage_timeout_ms=settings.STORAGE_TIMEOUT_MS,
        warmup_timeout_seconds=settings.WARMUP_TIMEOUT_SECONDS,
        startup_timeout_seconds=settings.STARTUP_TIMEOUT_SECONDS,
    )


# ============================================================================
# Singleton Pattern - Global Settings Instance
# ============================================================================

_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get or create settings instance (Singleton)
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


# Convenience export
settings = get_settings()


# ============================================================================
# Export
# ============================================================================

__all__ = [
    "Settings",
    "ServiceConfig",
    "Environment",
    "get_settings",
    "normalize_prefix",
    "resolve_config",
    "settings",
]
