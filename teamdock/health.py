"""Readiness probes for the services the Discord callback depends on."""

from __future__ import annotations

import logging

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from . import models
from .config import settings
from .database import engine
from .rate_limit import ping_redis

logger = logging.getLogger(__name__)


def profile_store_ready() -> bool:
    """The database answers and the profiles table has been migrated."""
    try:
        with engine.connect() as connection:
            return inspect(connection).has_table(models.Profile.__tablename__)
    except SQLAlchemyError:
        logger.warning("Profile store is unreachable", exc_info=True)
        return False


def redis_ready() -> bool:
    # Only a hard dependency when rate limiting is switched on.
    if not (settings.redis_health_required and settings.enable_optional_rate_limiting):
        return True
    return ping_redis()


def discord_configured() -> bool:
    return bool(settings.discord_client_id and settings.discord_client_secret)


def readiness_state() -> tuple[bool, dict[str, bool]]:
    checks = {
        "profile_store": profile_store_ready(),
        "redis": redis_ready(),
        "discord": discord_configured(),
    }
    return all(checks.values()), checks
