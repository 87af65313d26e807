"""
Shared FastAPI dependencies.

Redis-backed managers are created on first use so importing the API does not
require a running Redis; tests replace them through app.dependency_overrides.
"""

from functools import lru_cache

from src.database import get_db
from src.redis_job_manager import RedisJobManager
from src.run_lock import RunLockManager

__all__ = ["get_db", "get_job_manager", "get_lock_manager"]


@lru_cache(maxsize=1)
def get_job_manager() -> RedisJobManager:
    return RedisJobManager()


@lru_cache(maxsize=1)
def get_lock_manager() -> RunLockManager:
    return RunLockManager()
