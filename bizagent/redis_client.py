"""Optional Redis connection.

When REDIS_URL is set, cooldown state is shared across worker processes
through Redis. Without it every process keeps its own in-memory state,
which is fine for a single instance (`uvicorn --reload`).
"""

from __future__ import annotations

from typing import Optional

import redis

from bizagent.config import config
from bizagent.logging_config import get_logger

logger = get_logger(__name__)

redis_client: Optional[redis.Redis] = None
REDIS_AVAILABLE = False


def _connect() -> None:
    global redis_client, REDIS_AVAILABLE
    if not config.REDIS_URL:
        return
    try:
        client = redis.Redis.from_url(config.REDIS_URL, decode_responses=True, socket_timeout=2)
        client.ping()
    except redis.RedisError as e:
        logger.warning("redis_unavailable", error=str(e)[:200])
        return
    redis_client = client
    REDIS_AVAILABLE = True
    logger.info("redis_connected")


def get_redis_client() -> Optional[redis.Redis]:
    """Return the shared client, or None when Redis is not configured or unreachable."""
    return redis_client if REDIS_AVAILABLE else None


_connect()
