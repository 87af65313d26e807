"""
Redis Connection Manager
Shared Redis client for the run lock and the background job queue.

Connection settings come from the environment:
    REDIS_URL                 full URL (takes precedence when set)
    REDIS_HOST / REDIS_PORT / REDIS_DB / REDIS_PASSWORD
    REDIS_MAX_CONNECTIONS, REDIS_SOCKET_TIMEOUT, REDIS_CONNECT_TIMEOUT
"""
import os
import redis
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class RedisConnectionManager:
    """
    Process-wide Redis connection manager
    Creates the connection pool lazily on first use
    """

    _instance: Optional['RedisConnectionManager'] = None
    _client: Optional[redis.Redis] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def _pool_settings(self) -> dict:
        return {
            'max_connections': int(os.getenv('REDIS_MAX_CONNECTIONS', '10')),
            'socket_timeout': float(os.getenv('REDIS_SOCKET_TIMEOUT', '5.0')),
            'socket_connect_timeout': float(os.getenv('REDIS_CONNECT_TIMEOUT', '5.0')),
            'decode_responses': True,
        }

    def _connect(self):
        """Initialize Redis connection"""
        redis_url = os.getenv('REDIS_URL')
        settings = self._pool_settings()

        if redis_url:
            pool = redis.ConnectionPool.from_url(redis_url, **settings)
            target = redis_url
        else:
            redis_host = os.getenv('REDIS_HOST', 'localhost')
            redis_port = int(os.getenv('REDIS_PORT', '6379'))
            redis_db = int(os.getenv('REDIS_DB', '0'))
            pool = redis.ConnectionPool(
                host=redis_host,
                port=redis_port,
                db=redis_db,
                password=os.getenv('REDIS_PASSWORD') or None,
                **settings
            )
            target = f"{redis_host}:{redis_port} (db={redis_db})"

        client = redis.Redis(connection_pool=pool)
        try:
            client.ping()
        except redis.ConnectionError as e:
            logger.error(f"Failed to connect to Redis at {target}: {e}")
            raise ConnectionError(f"Redis connection failed ({target}): {e}") from e

        self._client = client
        logger.info(f"Redis connected: {target}")

    @property
    def client(self) -> redis.Redis:
        """Get Redis client instance"""
        if self._client is None:
            self._connect()
        return self._client

    def ping(self) -> bool:
        """Check if Redis connection is alive"""
        try:
            return bool(self.client.ping())
        except (redis.RedisError, ConnectionError) as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    def close(self):
        """Close Redis connection"""
        if self._client:
            self._client.close()
            self._client = None
            logger.info("Redis connection closed")


def get_redis_client() -> redis.Redis:
    """
    Get Redis client instance

    Returns:
        redis.Redis: Connected Redis client
    """
    return RedisConnectionManager().client
