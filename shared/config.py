"""
Shared configuration management for the secure session package.

Values come from the environment (prefix ``SESSION_``) or a ``.env`` file.
Durations are expressed in seconds; unset optional values mean "use the
built-in default".
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="SESSION_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )
    
    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    
    # External services
    redis_url: Optional[str] = Field(default=None)
    redis_config_key: str = Field(default="secure-session:config")
    sync_timeout_seconds: float = Field(default=10.0, gt=0)
    
    # Proxies allowed to set X-Forwarded-Proto (comma-separated, "*" for any)
    forwarded_allow_ips: str = Field(default="127.0.0.1")
    
    # Cookie
    cookie_name: str = Field(default="authtoken")
    
    # Session lifecycle; None keeps the built-in default
    login_path: Optional[str] = Field(default=None)
    logout_path: Optional[str] = Field(default=None)
    token_lifetime_seconds: Optional[int] = Field(default=None, gt=0)
    revalidate_interval_seconds: Optional[int] = Field(default=None, gt=0)
    key_retention: Optional[int] = Field(default=None, ge=2)
    form_token_timeout_seconds: Optional[int] = Field(default=None, gt=0)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""
    
    service_name: str
    port: int
    host: str = "0.0.0.0"
    
    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
