"""
Shared configuration management for the event relay.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Upstream event stream
    api_base_url: str = Field(default="https://api.amqautopause.zetsumei.xyz")
    stream_path: str = Field(default="/api/events/stream")
    session_cookie_name: str = Field(default="better-auth.session_token")
    connect_timeout_seconds: float = Field(default=10.0)

    # Reconnect policy
    reconnect_delay_seconds: float = Field(default=5.0)
    max_reconnect_attempts: int = Field(default=10)
    retry_strategy: str = Field(default="fixed")
    max_reconnect_delay_seconds: float = Field(default=60.0)
    retry_jitter: bool = Field(default=False)

    # Event matching
    pause_event_kind: str = Field(default="pause")
    filter_field: str = Field(default="rewardId")

    # Delivery
    delivery_timeout_seconds: float = Field(default=5.0)
    target_match_pattern: str = Field(default="*://animemusicquiz.com/*")

    # Local settings storage; None keeps settings in memory only
    config_store_path: Optional[str] = Field(default=None)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "127.0.0.1"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
