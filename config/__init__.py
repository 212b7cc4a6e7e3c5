"""Configuration management for the Guest Quota Gateway.

This module handles all configuration loading and validation using Pydantic BaseSettings.
Configuration is loaded from environment variables and .env files.
"""

from .config import (
    ApplicationConfig,
    AuthConfig,
    CacheConfig,
    MonitoringConfig,
    ServerConfig,
    StoreConfig,
    UpstreamConfig,
    str_to_bool,
)


def load_config() -> ApplicationConfig:
    """Load and validate application configuration."""
    return ApplicationConfig()


__all__ = [
    "ApplicationConfig",
    "AuthConfig",
    "CacheConfig",
    "MonitoringConfig",
    "ServerConfig",
    "StoreConfig",
    "UpstreamConfig",
    "load_config",
    "str_to_bool",
]
