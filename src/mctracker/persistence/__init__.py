"""Pluggable persistence backends behind the IManuscriptGateway protocol."""

from __future__ import annotations

from mctracker.core.config import AppSettings
from mctracker.core.logging import get_logger
from mctracker.core.protocols import IManuscriptGateway
from mctracker.persistence.dynamodb_backend import DynamoDBGateway
from mctracker.persistence.local_backend import LocalFileGateway
from mctracker.persistence.redis_backend import RedisGateway

logger = get_logger("persistence")


def create_gateway(settings: AppSettings | None = None) -> IManuscriptGateway:
    """Create the gateway selected by ``settings.backend``.

    Resolved once at startup; the choice is never changed at runtime.
    """
    if settings is None:
        settings = AppSettings()

    if settings.backend == "dynamodb":
        gateway: IManuscriptGateway = DynamoDBGateway(
            user_id=settings.user_id,
            table_name=settings.dynamodb.table_name,
            table_suffix=settings.dynamodb.table_suffix,
            region=settings.dynamodb.region,
            endpoint_url=settings.dynamodb.endpoint_url,
        )
    elif settings.backend == "redis":
        gateway = RedisGateway(
            user_id=settings.user_id,
            host=settings.redis.host,
            port=settings.redis.port,
            db=settings.redis.db,
            key_prefix=settings.redis.key_prefix,
        )
    else:
        gateway = LocalFileGateway(settings.local.data_dir)

    logger.info("Using %s persistence backend (%s)", settings.backend, settings.environment)
    return gateway
