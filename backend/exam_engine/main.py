"""
Online Exam Engine - FastAPI Application Entry Point.

This is the main application module that:
1. Initializes the FastAPI app with CORS middleware
2. Sets up structured JSON logging
3. Implements request ID middleware (X-Request-ID header)
4. Maps domain errors to JSON responses
5. Registers all API route handlers

The application follows a modular architecture:
- routes/: API endpoint handlers (student, admin, analytics)
- models/: SQLAlchemy ORM models
- services/: Business logic (access, selection, lifecycle, grading, ...)
- logging_config.py: Structured logging configuration
- database.py: Database connection management
"""

import time
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from exam_engine.logging_config import (
    setup_logging, get_logger, log_with_context,
    request_id_var, resolve_request_id
)
from exam_engine.errors import ExamEngineError
from exam_engine.routes import student_tests, admin_tests, analytics
from exam_engine.database import DATABASE_URL, create_tables

# Import all models so they are registered with Base.metadata
from exam_engine.models import Student, OnlineTest, TestAttempt  # noqa: F401

# ──────────────────────────────────────────────────────────────
# Initialize structured logging BEFORE anything else
# ──────────────────────────────────────────────────────────────
setup_logging()
logger = get_logger("http")

# Auto-create tables for SQLite local development
if DATABASE_URL.startswith("sqlite"):
    logger.info("Using SQLite — creating tables directly")
    create_tables()

# ──────────────────────────────────────────────────────────────
# Create FastAPI application
# ──────────────────────────────────────────────────────────────
app = FastAPI(
    title="Online Exam Engine",
    description=(
        "Timed online tests for coaching-institute cohorts: deployment windows, "
        "per-attempt question snapshots, autosave and resume, grading with "
        "negative marking, tab-switch warnings and result analytics."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"]
)


# ──────────────────────────────────────────────────────────────
# Request ID Middleware
#
# Tags every log line of a request with one ID and echoes it back as
# X-Request-ID. A well-formed inbound X-Request-ID is reused.
# ──────────────────────────────────────────────────────────────
@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    req_id = resolve_request_id(request.headers.get("X-Request-ID"))
    token = request_id_var.set(req_id)
    start_time = time.time()
    route = f"{request.method} {request.url.path}"

    log_with_context(logger, "DEBUG", f"Request started: {route}",
        extra_data={
            "ip": request.client.host if request.client else "unknown",
            "query_params": dict(request.query_params)
        })

    try:
        response = await call_next(request)
    except Exception:
        log_with_context(logger, "ERROR", f"Request failed: {route}",
            extra_data={"duration_ms": round((time.time() - start_time) * 1000, 2)},
            exc_info=True)
        raise
    finally:
        request_id_var.reset(token)

    response.headers["X-Request-ID"] = req_id
    log_with_context(logger, "INFO", f"Request completed: {route} → {response.status_code}",
        context={"request_id": req_id},
        extra_data={
            "duration_ms": round((time.time() - start_time) * 1000, 2),
            "status_code": response.status_code
        })
    return response


# ──────────────────────────────────────────────────────────────
# Domain errors → {"error", "code", ...} responses
# ──────────────────────────────────────────────────────────────
@app.exception_handler(ExamEngineError)
async def exam_engine_error_handler(request: Request, exc: ExamEngineError):
    log_with_context(logger, "WARNING",
        f"{request.method} {request.url.path} refused: {exc.message}",
        extra_data={"code": exc.code, "status_code": exc.status_code})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ──────────────────────────────────────────────────────────────
# Register API routes
# ──────────────────────────────────────────────────────────────
app.include_router(student_tests.router, tags=["Student Tests"])
app.include_router(analytics.router, tags=["Analytics"])
app.include_router(admin_tests.router, tags=["Admin"])


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint for Docker health checks and monitoring."""
    return {"status": "healthy", "service": "exam-engine-backend", "version": "1.0.0"}


@app.get("/", tags=["Root"])
def root():
    """Root endpoint with API information."""
    return {
        "service": "Online Exam Engine",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "student_tests": "GET /api/student/online-tests",
            "view_test": "GET /api/student/online-tests/{id}",
            "start_test": "POST /api/student/online-tests/{id}",
            "autosave": "PATCH /api/student/online-tests/{id}",
            "submit": "PUT /api/student/online-tests/{id}",
            "warning": "POST /api/student/online-tests/{id}/warning",
            "result": "GET /api/student/online-tests/{id}/result",
            "student_analytics": "GET /api/student/analytics",
            "deploy": "POST /api/admin/online-tests/deploy",
            "force_complete": "POST /api/admin/online-tests/{id}/force-complete",
            "reassign": "DELETE /api/admin/online-tests/{id}/reassign",
            "reassign_missed": "POST /api/admin/online-tests/{id}/reassign",
            "results": "GET /api/admin/online-tests/{id}/results"
        }
    }
