from __future__ import annotations

import logging
import os
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import DEFAULT_MAX_TRANSITION_ATTEMPTS


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    topic_prefix: str = "orderflow"


class TransportConfig(BaseModel):
    """Transport used to publish stage-changed events."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class EngineConfig(BaseModel):
    """Retry policy for conflicting transitions."""

    max_attempts: int = Field(default=DEFAULT_MAX_TRANSITION_ATTEMPTS, ge=1)
    backoff_base: float = Field(default=0.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)


class WebhookConfig(BaseModel):
    """Per-tenant shared secrets for carrier webhook signatures."""

    secrets: Dict[str, str] = Field(default_factory=dict)
    default_secret: Optional[str] = None

    def secret_for(self, tenant_id: str) -> Optional[str]:
        return self.secrets.get(tenant_id) or self.default_secret


class OrderflowConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    engine: EngineConfig = EngineConfig()
    webhooks: WebhookConfig = WebhookConfig()
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> OrderflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to ORDERFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("ORDERFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = OrderflowConfig(**data)
    else:
        config = OrderflowConfig()

    env_db_url = os.getenv("ORDERFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_secret = os.getenv("ORDERFLOW_WEBHOOK_SECRET")
    if env_secret:
        config.webhooks.default_secret = env_secret
    return config


def configure_logging(level: str | int = "INFO") -> None:
    """Configure root logging for CLI and server entry points."""
    logging.basicConfig(
        level=level if isinstance(level, int) else level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
