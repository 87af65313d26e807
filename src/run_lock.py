"""
Single-flight lock for assignment runs.

One run per (clinic, year, month) at a time. The lock is a Redis key set with
SET NX EX, so acquisition is atomic and a crashed run releases it after the
TTL. Release only deletes the key while it still holds our token.

Redis Keys:
- {prefix}:assign-lock:{clinic}:{YYYY-MM} : STRING - owner token (TTL)
"""
import os
import uuid
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from context.engine.errors import RunInProgressError
from src.redis_manager import get_redis_client

logger = logging.getLogger(__name__)

# Delete the key only if it still holds the caller's token
RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class RunLockManager:
    """
    Redis-backed run lock keyed by (clinic_id, year, month)

    Args:
        redis_client: Redis client (default: shared connection)
        ttl_seconds: Lock expiry (default: RUN_LOCK_TTL_SECONDS or 900)
        key_prefix: Redis key prefix (default: REDIS_KEY_PREFIX or "roster")
    """

    def __init__(self, redis_client=None, ttl_seconds: Optional[int] = None,
                 key_prefix: Optional[str] = None):
        self.redis = redis_client if redis_client is not None else get_redis_client()
        self.ttl_seconds = ttl_seconds or int(os.getenv("RUN_LOCK_TTL_SECONDS", "900"))
        self.key_prefix = key_prefix or os.getenv("REDIS_KEY_PREFIX", "roster")

    def _lock_key(self, clinic_id: str, year: int, month: int) -> str:
        return f"{self.key_prefix}:assign-lock:{clinic_id}:{year:04d}-{month:02d}"

    def acquire(self, clinic_id: str, year: int, month: int) -> Optional[str]:
        """
        Try to take the lock

        Returns:
            Owner token, or None if another run holds the lock
        """
        token = str(uuid.uuid4())
        key = self._lock_key(clinic_id, year, month)
        if self.redis.set(key, token, nx=True, ex=self.ttl_seconds):
            logger.info(f"Run lock acquired: {key}")
            return token
        logger.warning(f"Run lock busy: {key}")
        return None

    def release(self, clinic_id: str, year: int, month: int, token: str) -> bool:
        """Release the lock if still owned by token"""
        key = self._lock_key(clinic_id, year, month)
        released = bool(self.redis.eval(RELEASE_SCRIPT, 1, key, token))
        if released:
            logger.info(f"Run lock released: {key}")
        else:
            logger.warning(f"Run lock {key} was no longer held by this run")
        return released

    def is_locked(self, clinic_id: str, year: int, month: int) -> bool:
        return self.redis.get(self._lock_key(clinic_id, year, month)) is not None

    @contextmanager
    def hold(self, clinic_id: str, year: int, month: int) -> Iterator[str]:
        """
        Hold the lock for the duration of a with-block

        Raises:
            RunInProgressError: If another run holds the lock
        """
        token = self.acquire(clinic_id, year, month)
        if token is None:
            raise RunInProgressError(
                f"An assignment run for {clinic_id} {year}-{month:02d} is already in progress",
                code="RUN_IN_PROGRESS",
            )
        try:
            yield token
        finally:
            self.release(clinic_id, year, month, token)
