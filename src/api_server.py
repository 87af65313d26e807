"""
Clinic Roster FastAPI Application.

Main entry point for the REST API: monthly assignment runs, schedule
deployment, leave quota decisions and fairness snapshots.

Run with:
    uvicorn src.api_server:app --reload --port 8080

Or production:
    uvicorn src.api_server:app --host 0.0.0.0 --port 8080
"""

import os
import sys
import uuid
import logging
import pathlib
from datetime import datetime

# Setup path
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from context.engine.errors import (
    ConflictError, DataError, RosterError, RunInProgressError,
)
from src.database import init_db
from src.fairness_service import ScheduleStateError
from src.leave_service import LeaveRequestError
from src.models import HealthResponse
from src.redis_worker import start_worker_pool, cleanup_worker_pool
from src.routers import v1_router

API_VERSION = "1.0.0"

# ============================================================================
# LOGGING SETUP
# ============================================================================

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("roster.api")

# ============================================================================
# MIDDLEWARE: REQUEST ID TRACKING
# ============================================================================

class RequestIdMiddleware(BaseHTTPMiddleware):
    """Add request ID to all requests for tracing."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

# ============================================================================
# FASTAPI APP
# ============================================================================

app = FastAPI(
    title="Clinic Roster API",
    description="Staff shift assignment with quota fairness and leave control",
    version=API_VERSION,
    default_response_class=ORJSONResponse,
    docs_url="/docs",
    openapi_url="/openapi.json"
)

app.add_middleware(RequestIdMiddleware)

cors_origins = os.getenv("CORS_ORIGINS", "*").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_origins != ["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(v1_router)

# ============================================================================
# BACKGROUND WORKERS
# ============================================================================

NUM_WORKERS = int(os.getenv("WORKER_COUNT", "1"))
START_WORKERS = os.getenv("START_WORKERS", "true").lower() in ("true", "1", "yes")
worker_processes = []
worker_stop_event = None


@app.on_event("startup")
async def startup_event():
    """Create tables and start the worker pool"""
    global worker_processes, worker_stop_event

    init_db()
    if START_WORKERS:
        logger.info(f"Starting {NUM_WORKERS} roster workers with Redis...")
        worker_processes, worker_stop_event = start_worker_pool(
            num_workers=NUM_WORKERS,
            ttl_seconds=int(os.getenv("JOB_RESULT_TTL_SECONDS", "3600"))
        )
    else:
        logger.info("Worker startup disabled (START_WORKERS=false). Run workers separately.")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop workers on shutdown"""
    if START_WORKERS and worker_processes:
        logger.info("Shutting down roster workers...")
        cleanup_worker_pool(worker_processes, worker_stop_event)

# ============================================================================
# ENDPOINTS
# ============================================================================

@app.get("/health", response_model=HealthResponse)
async def health():
    """Health check endpoint."""
    return HealthResponse(status="ok")


@app.get("/version")
async def get_version():
    """Get API version information."""
    return {
        "apiVersion": API_VERSION,
        "timestamp": datetime.now().isoformat()
    }

# ============================================================================
# ERROR HANDLERS
# ============================================================================

def error_status(exc: RosterError) -> int:
    if isinstance(exc, (ScheduleStateError, LeaveRequestError)):
        return 400
    if isinstance(exc, (RunInProgressError, ConflictError)):
        return 409
    if isinstance(exc, DataError):
        return 404
    return 422


@app.exception_handler(RosterError)
async def roster_error_handler(request: Request, exc: RosterError):
    """Map roster errors to structured JSON responses."""
    request_id = getattr(request.state, "request_id", "unknown")
    status_code = error_status(exc)
    logger.warning("requestId=%s %s (%s): %s", request_id, exc.code, exc.category.value, exc.message)
    return ORJSONResponse(
        status_code=status_code,
        content={
            "status": "ERROR",
            "errorCode": exc.code,
            "errorCategory": exc.category.value,
            "message": exc.message,
            "meta": {"requestId": request_id, "timestamp": datetime.now().isoformat()},
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error("Unhandled exception requestId=%s: %s", request_id, str(exc), exc_info=True)
    return ORJSONResponse(
        status_code=500,
        content={
            "status": "ERROR",
            "error": "Internal server error",
            "meta": {"requestId": request_id, "timestamp": datetime.now().isoformat()},
        },
    )

# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
