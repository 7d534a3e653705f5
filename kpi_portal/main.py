"""
KPI Portal API

Middleware order: CORS -> CorrelationId -> Logging.
Docs live at the root (/docs, /openapi.json); routers are mounted under /api.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Union

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

import kpi_portal.models  # noqa: F401  (force model registration with SQLAlchemy)
from kpi_portal.core.config import settings
from kpi_portal.core.exceptions import AppException
from kpi_portal.core.init_system import init_system_data
from kpi_portal.core.limiter import limiter
from kpi_portal.core.logging import setup_logging
from kpi_portal.core.middleware import CorrelationIdMiddleware, LoggingMiddleware
from kpi_portal.database import init_db, SessionLocal
from kpi_portal.routers.api_router import api_router
from kpi_portal.services.escalation import EscalationService
from kpi_portal.services.workflow import build_engine

# ============================================================================
# LOGGING SETUP
# ============================================================================
setup_logging()
logger = logging.getLogger(__name__)


def run_sweep() -> dict:
    """One pass of the escalation job on its own session."""
    db = SessionLocal()
    try:
        return EscalationService(build_engine(db)).run()
    finally:
        db.close()


async def escalation_loop(interval_seconds: int):
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            summary = await asyncio.to_thread(run_sweep)
            logger.info("Escalation sweep finished", extra=summary)
        except Exception:
            logger.exception("Escalation sweep failed")


# ============================================================================
# LIFESPAN MANAGEMENT
# ============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifecycle manager.
    - Startup: create tables, bootstrap admin, start the escalation job
    - Shutdown: stop the job
    """
    logger.info(f"Starting {settings.app_name} v{settings.version} ({settings.environment})")

    try:
        init_db()
        logger.info("Database initialized successfully")
        init_system_data()
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    job = None
    if settings.workflow.enable_escalation_job:
        job = asyncio.create_task(escalation_loop(settings.workflow.escalation_interval_seconds))
        logger.info(f"Escalation job every {settings.workflow.escalation_interval_seconds}s")

    yield

    if job is not None:
        job.cancel()
        try:
            await job
        except asyncio.CancelledError:
            pass
    logger.info("Gracefully shutting down...")


# ============================================================================
# FASTAPI INSTANCE
# ============================================================================
app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="KPI management with a two-level approval workflow",
    docs_url="/docs",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# ============================================================================
# RATE LIMITER
# ============================================================================
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ============================================================================
# MIDDLEWARE STACK (last added runs first)
# ============================================================================
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[settings.request_id_header, "X-Process-Time"],
)

# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle FastAPI validation errors (422) with structured format."""
    errors = []
    for error in exc.errors():
        # loc is usually ('body', 'field_name')
        field = error["loc"][-1] if len(error["loc"]) > 0 else "unknown"
        errors.append({
            "field": str(field),
            "msg": error["msg"],
            "code": "VALIDATION_ERROR",
        })

    logger.warning(f"Validation Error: {errors}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"success": False, "message": "Request validation failed", "errors": errors}
    )


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    """Handle domain-specific application exceptions."""
    logger.warning(f"AppException: {exc.message}", extra={"code": exc.error_code})
    messages = (exc.details or {}).get("errors") or [exc.message]
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.message,
            "errors": [{"msg": msg, "code": exc.error_code} for msg in messages]
        }
    )


@app.exception_handler(StarletteHTTPException)
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: Union[HTTPException, StarletteHTTPException]):
    """Handle standard HTTP exceptions."""
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": message,
            "errors": [{"msg": message}]
        },
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Fallback handler for unhandled server errors."""
    logger.exception("Unhandled server error", extra={"path": request.url.path})
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "An unexpected server error occurred.",
            "errors": [{"msg": "An unexpected server error occurred."}]
        }
    )


# ============================================================================
# ROUTER INCLUSION
# ============================================================================
app.include_router(api_router, prefix=settings.api_prefix)

# ============================================================================
# OPERATIONAL ENDPOINTS (at root level)
# ============================================================================
@app.get("/", tags=["Health"])
def root():
    """API root endpoint."""
    return {
        "message": f"{settings.app_name} API",
        "version": settings.version,
        "docs": "/docs",
    }


@app.get("/health", tags=["Health"])
def health_check():
    """Liveness probe for load balancers and orchestrators."""
    return {
        "status": "up",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.version,
        "environment": settings.environment,
    }


@app.get("/readiness", tags=["Health"])
def readiness_check():
    """Readiness probe - verifies database connectivity."""
    try:
        from sqlalchemy import text
        with SessionLocal() as session:
            session.execute(text("SELECT 1"))
        return {
            "status": "ready",
            "components": {"database": "connected"},
        }
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        raise HTTPException(status_code=503, detail="Service not ready")


@app.get("/liveness", tags=["Health"])
def liveness_check():
    """Alias for health check."""
    return health_check()
