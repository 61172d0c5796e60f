"""Application configuration using pydantic-settings with grouped env prefixes."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings


class LocalStoreConfig(BaseSettings):
    """On-device JSON store configuration (offline mode)."""

    model_config = {"env_prefix": "MCTRACKER_LOCAL_"}

    data_dir: Path = Path.home() / ".mctracker"


class DynamoDBConfig(BaseSettings):
    """DynamoDB configuration."""

    model_config = {"env_prefix": "MCTRACKER_DYNAMO_"}

    table_name: str = "mctracker-manuscripts"
    table_suffix: str = ""  # "-dev", "-uat", or "" for prod
    region: str = "us-east-1"
    endpoint_url: str | None = None  # LocalStack override


class RedisConfig(BaseSettings):
    """Redis store configuration."""

    model_config = {"env_prefix": "MCTRACKER_REDIS_"}

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    key_prefix: str = "mctracker"


class AppSettings(BaseSettings):
    """Root application settings aggregating all sub-configs."""

    model_config = {"env_prefix": "MCTRACKER_"}

    environment: Literal["dev", "uat", "prod"] = "dev"
    log_level: str = "INFO"

    backend: Literal["local", "dynamodb", "redis"] = "local"
    user_id: str = "offline-user"
    auto_remarks: bool = True

    local: LocalStoreConfig = LocalStoreConfig()
    dynamodb: DynamoDBConfig = DynamoDBConfig()
    redis: RedisConfig = RedisConfig()
