"""Redis connection pool for realtime fan-out.

Graceful degradation: if Redis is unavailable, publishing is skipped and
clients fall back to polling only.
"""

import logging
import redis

from pscontrol.config import config

log = logging.getLogger('db.redis')

_pool = None


def init_redis():
    """Initialize Redis connection pool. Safe to call multiple times."""
    global _pool
    if _pool is not None:
        return
    if not config.REDIS_URL:
        log.info('REDIS_URL not set, realtime fan-out disabled')
        return
    try:
        _pool = redis.ConnectionPool.from_url(
            config.REDIS_URL,
            decode_responses=True,
            max_connections=20,
        )
        redis.Redis(connection_pool=_pool).ping()
        log.info('Redis connected')
    except redis.RedisError as e:
        log.warning(f'Redis unavailable ({e}), realtime fan-out disabled')
        _pool = None


def get_redis():
    """Get a Redis client. Returns None if unavailable."""
    if _pool is None:
        return None
    return redis.Redis(connection_pool=_pool)
