"""
Redis-based Worker for background roster jobs
Runs validation passes and fairness snapshot recomputes off the request path
"""
import os
import time
import traceback
import sys
import pathlib
from typing import Any, Dict, List
from multiprocessing import Process, Event
import signal
from functools import wraps

# Setup path for imports
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))

from src import database
from src.redis_job_manager import RedisJobManager, JobStatus, JobType
from src.fairness_service import get_schedule_or_raise, recompute_snapshots
from src.assignment_validator import validate_schedule


class JobTimeoutError(Exception):
    """Raised when a job exceeds its timeout"""
    pass


def timeout_handler(signum, frame):
    raise JobTimeoutError("Job timed out")


def with_timeout(timeout_seconds):
    """
    Decorator to add timeout to a function using SIGALRM

    Args:
        timeout_seconds: Maximum seconds to allow function to run

    Raises:
        JobTimeoutError: If function exceeds timeout
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            signal.signal(signal.SIGALRM, timeout_handler)
            signal.alarm(timeout_seconds)
            try:
                return func(*args, **kwargs)
            finally:
                signal.alarm(0)
        return wrapper
    return decorator


def execute_job(job_type: JobType, payload: Dict[str, Any], session_factory=None) -> Dict[str, Any]:
    """
    Run one job against the database

    Args:
        job_type: Kind of work
        payload: Job arguments ({"scheduleId": ..., "autoFix": ...})
        session_factory: Session factory (default: database.SessionLocal)

    Returns:
        JSON-serializable result
    """
    factory = session_factory or database.SessionLocal
    session = factory()
    try:
        schedule = get_schedule_or_raise(session, payload['scheduleId'])
        if job_type == JobType.VALIDATE_SCHEDULE:
            return validate_schedule(
                session,
                schedule,
                auto_fix=bool(payload.get('autoFix', False)),
                max_fixes=payload.get('maxFixes'),
            )
        if job_type == JobType.FAIRNESS_SNAPSHOT:
            snapshots = recompute_snapshots(session, schedule.id)
            return {
                'scheduleId': schedule.id,
                'snapshotCount': len(snapshots),
                'snapshots': [s.to_dict() for s in snapshots],
            }
        raise ValueError(f"Unsupported job type: {job_type}")
    finally:
        session.close()


def process_job(job_manager: RedisJobManager, job_id: str, session_factory=None,
                log_prefix: str = "[WORKER]", timeout_seconds: int = 0) -> bool:
    """
    Process one queued job and record its outcome

    Returns:
        True if the job completed, False if it failed or was not found
    """
    job_info = job_manager.get_job(job_id)
    if not job_info:
        print(f"{log_prefix} Job {job_id} not found, skipping")
        return False

    job_manager.update_status(job_id, JobStatus.IN_PROGRESS)
    start_time = time.time()

    run = execute_job
    if timeout_seconds > 0:
        run = with_timeout(timeout_seconds)(execute_job)

    try:
        result = run(job_info.job_type, job_info.payload, session_factory)
    except JobTimeoutError:
        error_msg = f"Job exceeded timeout limit of {timeout_seconds}s"
        print(f"{log_prefix} Job {job_id} TIMEOUT")
        job_manager.update_status(job_id, JobStatus.FAILED, error_message=error_msg)
        return False
    except Exception as job_error:
        error_msg = f"{type(job_error).__name__}: {job_error}"
        print(f"{log_prefix} Job {job_id} failed: {error_msg}")
        print(f"{log_prefix} Traceback:\n{traceback.format_exc()}")
        job_manager.update_status(job_id, JobStatus.FAILED, error_message=error_msg)
        return False

    job_manager.store_result(job_id, result)
    job_manager.update_status(job_id, JobStatus.COMPLETED)
    print(f"{log_prefix} Job {job_id} ({job_info.job_type.value}) completed in {time.time() - start_time:.2f}s")
    return True


def roster_worker(worker_id: int, stop_event: Event, ttl_seconds: int = 3600):
    """
    Background worker that processes jobs from the Redis queue

    Args:
        worker_id: Worker identifier (1, 2, ...)
        stop_event: Multiprocessing event to signal shutdown
        ttl_seconds: Result TTL for job manager
    """
    job_manager = RedisJobManager(result_ttl_seconds=ttl_seconds)
    timeout_seconds = int(os.getenv("JOB_TIMEOUT_SECONDS", "600"))
    log_prefix = f"[WORKER-{worker_id}]"

    print(f"{log_prefix} Roster worker started (PID: {os.getpid()})")

    def signal_handler(signum, frame):
        print(f"{log_prefix} Received shutdown signal")
        stop_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    while not stop_event.is_set():
        try:
            job_id = job_manager.get_next_job(timeout=1)
            if not job_id:
                continue
            print(f"{log_prefix} Processing job {job_id}")
            process_job(job_manager, job_id, log_prefix=log_prefix, timeout_seconds=timeout_seconds)
        except Exception as e:
            # Worker-level errors (e.g. Redis connection issues)
            print(f"{log_prefix} Worker error: {type(e).__name__}: {e}")
            print(f"{log_prefix} Traceback:\n{traceback.format_exc()}")
            time.sleep(2)

    print(f"{log_prefix} Worker stopped")


def start_worker_pool(num_workers: int = 1, ttl_seconds: int = 3600) -> tuple[List[Process], Event]:
    """
    Start pool of worker processes

    Returns:
        Tuple of (process list, stop_event)
    """
    processes = []
    stop_event = Event()

    for i in range(num_workers):
        process = Process(
            target=roster_worker,
            args=(i + 1, stop_event, ttl_seconds),
            name=f"RosterWorker-{i + 1}",
            daemon=False
        )
        process.start()
        processes.append(process)
        print(f"[MANAGER] Started worker {i + 1}/{num_workers} (PID: {process.pid})")

    return processes, stop_event


def cleanup_worker_pool(processes: List[Process], stop_event: Event, timeout: int = 10):
    """
    Gracefully terminate worker processes

    Args:
        processes: List of Process objects from start_worker_pool
        stop_event: Event to signal shutdown
        timeout: Seconds to wait for graceful shutdown
    """
    print(f"[MANAGER] Terminating {len(processes)} workers...")
    stop_event.set()

    start_time = time.time()
    for process in processes:
        remaining_time = max(0, timeout - (time.time() - start_time))
        process.join(timeout=remaining_time)

        if process.is_alive():
            print(f"[MANAGER] Force terminating worker {process.name}")
            process.terminate()
            process.join(timeout=2)

    print("[MANAGER] All workers terminated")


if __name__ == "__main__":
    num = int(os.getenv("WORKER_COUNT", "1"))
    procs, event = start_worker_pool(num_workers=num, ttl_seconds=int(os.getenv("JOB_RESULT_TTL_SECONDS", "3600")))
    try:
        for p in procs:
            p.join()
    except KeyboardInterrupt:
        cleanup_worker_pool(procs, event)
