"""
Shared fixtures: in-memory sqlite sessions and an in-process Redis double.
"""

import os
import sys
import pathlib
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent))

os.environ.setdefault("START_WORKERS", "false")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.database import Base


class FakeRedis:
    """Minimal in-process Redis covering the commands the service uses."""

    def __init__(self):
        self.store = {}
        self.hashes = {}
        self.lists = {}
        self.ttls = {}

    # strings
    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = str(value)
        if ex:
            self.ttls[key] = ex
        return True

    def setex(self, key, ttl, value):
        self.store[key] = str(value)
        self.ttls[key] = ttl
        return True

    def get(self, key):
        return self.store.get(key)

    def delete(self, *keys):
        removed = 0
        for key in keys:
            for bucket in (self.store, self.hashes, self.lists):
                if key in bucket:
                    del bucket[key]
                    removed += 1
        return removed

    def exists(self, key):
        return int(key in self.store or key in self.hashes or key in self.lists)

    def expire(self, key, ttl):
        self.ttls[key] = ttl
        return True

    def eval(self, script, numkeys, *args):
        # Only the compare-and-delete release script is used
        key, token = args[0], args[1]
        if "del" in script and self.store.get(key) == token:
            return self.delete(key)
        return 0

    # hashes
    def hset(self, key, field=None, value=None, mapping=None):
        bucket = self.hashes.setdefault(key, {})
        if mapping:
            bucket.update({k: str(v) for k, v in mapping.items()})
        if field is not None:
            bucket[field] = str(value)
        return 1

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    # lists
    def lpush(self, key, *values):
        bucket = self.lists.setdefault(key, [])
        for v in values:
            bucket.insert(0, v)
        return len(bucket)

    def rpop(self, key):
        bucket = self.lists.get(key)
        return bucket.pop() if bucket else None

    def brpop(self, key, timeout=0):
        value = self.rpop(key)
        return (key, value) if value is not None else None

    def llen(self, key):
        return len(self.lists.get(key, []))

    def ping(self):
        return True


@pytest.fixture()
def fake_redis():
    return FakeRedis()


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()
