"""Configuration classes for the Guest Quota Gateway.

This module contains all configuration classes organized by domain.
Configuration is loaded from environment variables and .env files.
"""

from typing import Any, Dict, List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def str_to_bool(value: Any) -> bool:
    """Convert various string representations to boolean values.

    Args:
        value: The value to convert. Can be bool, str, int, or any other type.

    Returns:
        bool: The converted boolean value.

    Examples:
        >>> str_to_bool("true")
        True
        >>> str_to_bool("off")
        False
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes", "on", "enabled")
    return bool(value)


class ServerConfig(BaseSettings):
    """Server configuration settings."""

    # Application metadata
    app_name: str = "Guest Quota Gateway"
    app_version: str = "1.0.0"
    debug: bool = False

    server_port: int = Field(default=8080, alias="SERVER_PORT")
    server_host: str = Field(default="0.0.0.0", alias="SERVER_HOST")
    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])


class StoreConfig(BaseSettings):
    """Document store configuration settings."""

    store_backend: str = Field(default="redis", alias="STORE_BACKEND")

    # Redis configuration
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_password: Optional[str] = Field(default=None, alias="REDIS_PASSWORD")
    redis_db: int = Field(default=0, alias="REDIS_DB")
    redis_socket_timeout: int = 30
    redis_retry_on_timeout: bool = True
    redis_max_connections: int = 20
    redis_key_prefix: str = Field(default="gqg", alias="REDIS_KEY_PREFIX")

    # Native reclamation runs this long after a record's own expiry
    native_expiry_grace_seconds: int = 60

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        """Validate store backend."""
        backend = v.lower()
        if backend not in ("memory", "redis"):
            raise ValueError("store_backend must be one of: ['memory', 'redis']")
        return backend


class AuthConfig(BaseSettings):
    """Guest identity and quota configuration settings."""

    jwt_secret: str = Field(default="change-me-in-production", alias="JWT_SECRET")
    jwt_algorithm: str = "HS256"
    token_expiry_leeway_seconds: int = Field(default=300, alias="TOKEN_EXPIRY_LEEWAY_SECONDS")
    identity_lifetime_hours: int = 24
    default_quota_limit: int = Field(default=100, alias="GUEST_QUOTA_LIMIT")
    max_active_sessions_per_fingerprint: int = Field(
        default=1000, alias="MAX_ACTIVE_SESSIONS_PER_FINGERPRINT"
    )
    usage_history_limit: int = 50
    quota_enforcement_enabled: bool = Field(default=True, alias="QUOTA_ENFORCEMENT_ENABLED")

    @field_validator("quota_enforcement_enabled", mode="before")
    @classmethod
    def validate_quota_enforcement_enabled(cls, v) -> bool:
        """Convert string boolean values to actual boolean."""
        return str_to_bool(v)

    @field_validator("default_quota_limit", "max_active_sessions_per_fingerprint")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Limits must be positive."""
        if v <= 0:
            raise ValueError("limit must be greater than zero")
        return v


class CacheConfig(BaseSettings):
    """Response cache configuration settings."""

    cache_ttl_seconds: Dict[str, int] = Field(
        default_factory=lambda: {
            "video": 3600,
            "channel": 21600,
            "search": 1800,
            "trending": 900,
        }
    )
    cache_default_ttl_seconds: int = 1800

    # Warming
    cache_warm_on_startup: bool = Field(default=False, alias="CACHE_WARM_ON_STARTUP")
    cache_warm_delay_seconds: float = 1.0
    cache_warm_item_delay_seconds: float = 0.5
    cache_warm_max_results: int = 25
    cache_warm_search_queries: List[str] = Field(
        default_factory=lambda: [
            "javascript tutorial",
            "react tutorial",
            "node.js tutorial",
            "python programming",
            "web development",
            "coding for beginners",
            "javascript course",
            "react hooks",
            "mongodb tutorial",
            "express.js tutorial",
        ]
    )
    cache_warm_video_ids: List[str] = Field(default_factory=lambda: ["dQw4w9WgXcQ"])
    cache_warm_channel_ids: List[str] = Field(
        default_factory=lambda: ["UCXuqSBlHAE6Xw-yeJA0Tunw", "UCWv7vMbMWH4-V0ZXdmDpPBA"]
    )

    @field_validator("cache_warm_on_startup", mode="before")
    @classmethod
    def validate_cache_warm_on_startup(cls, v) -> bool:
        """Convert string boolean values to actual boolean."""
        return str_to_bool(v)


class UpstreamConfig(BaseSettings):
    """Upstream video API configuration settings."""

    youtube_api_key: str = Field(default="", alias="YOUTUBE_API_KEY")
    youtube_base_url: str = Field(
        default="https://www.googleapis.com/youtube/v3", alias="YOUTUBE_BASE_URL"
    )
    youtube_region_code: str = "US"
    upstream_timeout: float = 10.0
    upstream_retry_attempts: int = 3
    upstream_retry_base_delay: float = 1.0
    upstream_retry_max_delay: float = 30.0

    @field_validator("youtube_base_url")
    @classmethod
    def validate_youtube_base_url(cls, v: str) -> str:
        """Ensure the upstream URL is properly formatted."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("youtube_base_url must start with http:// or https://")
        return v.rstrip("/")


class MonitoringConfig(BaseSettings):
    """Monitoring configuration settings."""

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")
    cleanup_interval_seconds: int = Field(default=3600, alias="CLEANUP_INTERVAL_SECONDS")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_json", mode="before")
    @classmethod
    def validate_log_json(cls, v) -> bool:
        """Convert string boolean values to actual boolean."""
        return str_to_bool(v)


class ApplicationConfig(
    ServerConfig,
    StoreConfig,
    AuthConfig,
    CacheConfig,
    UpstreamConfig,
    MonitoringConfig,
    BaseSettings
):
    """Main application configuration that combines all configuration domains."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    def ttl_for(self, endpoint_class: str) -> int:
        """Cache TTL in seconds for an endpoint class."""
        return self.cache_ttl_seconds.get(endpoint_class, self.cache_default_ttl_seconds)
