"""
Redis-based Job Manager for background roster jobs
Validation passes and fairness snapshot recomputes are queued here so they
run in worker processes instead of on the request path.
"""
import os
import uuid
import time
import json
from typing import Dict, Optional, Any
from enum import Enum
from dataclasses import dataclass, field, asdict
import logging

from src.redis_manager import get_redis_client

logger = logging.getLogger(__name__)


class JobStatus(Enum):
    """Job execution states"""
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class JobType(Enum):
    """Kinds of background work"""
    VALIDATE_SCHEDULE = "validate_schedule"
    FAIRNESS_SNAPSHOT = "fairness_snapshot"


@dataclass
class JobInfo:
    """Job metadata and tracking information"""
    job_id: str
    job_type: JobType
    status: JobStatus
    created_at: float
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a flat dict for a Redis HASH (no None values)"""
        data = asdict(self)
        data['job_type'] = self.job_type.value
        data['status'] = self.status.value
        data['payload'] = json.dumps(self.payload)
        return {k: (v if v is not None else '') for k, v in data.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JobInfo':
        """Create JobInfo from a Redis HASH, empty strings become None"""
        data = dict(data)
        data['job_type'] = JobType(data['job_type'])
        data['status'] = JobStatus(data['status'])
        data['created_at'] = float(data['created_at'])
        for key in ('started_at', 'completed_at'):
            data[key] = float(data[key]) if data.get(key) not in (None, '') else None
        data['error_message'] = data.get('error_message') or None
        payload = data.get('payload')
        data['payload'] = json.loads(payload) if payload else {}
        return cls(**data)


class RedisJobManager:
    """
    Redis-based job queue shared by the API server and worker processes

    Redis Keys:
    - {prefix}:job:queue          : LIST - Job queue (LPUSH/BRPOP)
    - {prefix}:job:{uuid}         : HASH - Job metadata
    - {prefix}:result:{uuid}      : STRING - Job result (JSON, TTL)
    """

    def __init__(self, result_ttl_seconds: Optional[int] = None, key_prefix: Optional[str] = None,
                 redis_client=None):
        """
        Initialize Redis job manager

        Args:
            result_ttl_seconds: Time to keep finished jobs (default: JOB_RESULT_TTL_SECONDS or 1 hour)
            key_prefix: Redis key prefix (default: REDIS_KEY_PREFIX or "roster")
            redis_client: Redis client (default: shared connection)
        """
        self.redis = redis_client if redis_client is not None else get_redis_client()
        self.result_ttl_seconds = result_ttl_seconds or int(os.getenv("JOB_RESULT_TTL_SECONDS", "3600"))
        self.key_prefix = key_prefix or os.getenv("REDIS_KEY_PREFIX", "roster")
        self.queue_key = f"{self.key_prefix}:job:queue"

    def _job_key(self, job_id: str) -> str:
        return f"{self.key_prefix}:job:{job_id}"

    def _result_key(self, job_id: str) -> str:
        return f"{self.key_prefix}:result:{job_id}"

    def create_job(self, job_type: JobType, payload: Dict[str, Any]) -> str:
        """
        Create new job and add to queue

        Args:
            job_type: Kind of work
            payload: JSON-serializable job arguments

        Returns:
            job_id: UUID for tracking
        """
        job_id = str(uuid.uuid4())
        job_info = JobInfo(
            job_id=job_id,
            job_type=job_type,
            status=JobStatus.QUEUED,
            created_at=time.time(),
            payload=payload,
        )
        self.redis.hset(self._job_key(job_id), mapping=job_info.to_dict())
        self.redis.lpush(self.queue_key, job_id)
        logger.info(f"Job created: {job_id} ({job_type.value})")
        return job_id

    def get_job(self, job_id: str) -> Optional[JobInfo]:
        job_data = self.redis.hgetall(self._job_key(job_id))
        if not job_data:
            return None
        return JobInfo.from_dict(job_data)

    def get_next_job(self, timeout: int = 0) -> Optional[str]:
        """
        Get next job from queue

        Args:
            timeout: Seconds to wait (0 = non-blocking)

        Returns:
            job_id or None if queue empty
        """
        if timeout == 0:
            return self.redis.rpop(self.queue_key)
        result = self.redis.brpop(self.queue_key, timeout=timeout)
        return result[1] if result else None

    def update_status(self, job_id: str, status: JobStatus,
                      error_message: Optional[str] = None) -> bool:
        job_key = self._job_key(job_id)
        if not self.redis.exists(job_key):
            return False

        fields = {'status': status.value}
        now = time.time()
        if status == JobStatus.IN_PROGRESS:
            fields['started_at'] = now
        elif status in (JobStatus.COMPLETED, JobStatus.FAILED):
            fields['completed_at'] = now
        if error_message:
            fields['error_message'] = error_message
        self.redis.hset(job_key, mapping=fields)

        if status in (JobStatus.COMPLETED, JobStatus.FAILED):
            self.redis.expire(job_key, self.result_ttl_seconds)

        logger.info(f"Job {job_id}: {status.value}")
        return True

    def store_result(self, job_id: str, result: Dict[str, Any]) -> bool:
        if not self.redis.exists(self._job_key(job_id)):
            return False
        self.redis.setex(self._result_key(job_id), self.result_ttl_seconds, json.dumps(result, default=str))
        return True

    def get_result(self, job_id: str) -> Optional[Dict[str, Any]]:
        result_json = self.redis.get(self._result_key(job_id))
        return json.loads(result_json) if result_json else None

    def get_queue_length(self) -> int:
        return self.redis.llen(self.queue_key)
