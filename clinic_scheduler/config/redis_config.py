# clinic_scheduler/config/redis_config.py

import logging
from typing import Optional

import redis

from clinic_scheduler.config.settings import Settings, get_settings

logger = logging.getLogger("cache")


class RedisConfig:
    """Lazily created Redis pool backing the availability cache"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        # None until test_connection() has run
        self.reachable: Optional[bool] = None

        self._client: Optional[redis.Redis] = None
        self._connection_pool: Optional[redis.ConnectionPool] = None

    @property
    def enabled(self) -> bool:
        return self.settings.availability_cache_enabled

    def pool_options(self) -> dict:
        s = self.settings
        return {
            "host": s.redis_host,
            "port": s.redis_port,
            "password": s.redis_password or None,
            "db": s.redis_db,
            "max_connections": s.redis_max_connections,
            "socket_timeout": s.redis_socket_timeout,
            "socket_connect_timeout": s.redis_socket_connect_timeout,
            # Cached slot lists are JSON text
            "decode_responses": True,
        }

    def get_client(self) -> redis.Redis:
        if self._client is None:
            if self._connection_pool is None:
                self._connection_pool = redis.ConnectionPool(**self.pool_options())
            self._client = redis.Redis(connection_pool=self._connection_pool)
        return self._client

    def test_connection(self) -> bool:
        try:
            self.get_client().ping()
        except redis.RedisError as e:
            logger.warning(f"Redis at {self.settings.redis_host}:{self.settings.redis_port} unreachable: {e}")
            self.reachable = False
        else:
            logger.info("Redis connection successful, availability cache active")
            self.reachable = True
        return self.reachable

    def close(self):
        if self._client is not None:
            self._client.close()
            self._client = None
        if self._connection_pool is not None:
            self._connection_pool.disconnect()
            self._connection_pool = None
        self.reachable = None


redis_config = RedisConfig()
