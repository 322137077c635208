# main.py - Project Hub API
# Features:
# - Request correlation IDs (carried into every audit entry)
# - Security headers
# - Uniform JSON error bodies: {"error": ..., "request_id": ...}
# - Storage and upstream failures mapped to 409 / 502 / 503
# - Health check with DB verification

import os
import json
import uuid
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import engine, init_db, close_db, get_db_context
from identity import IDENTITY_SERVICE_URL
from sharepoint import SHAREPOINT_TENANT_ID, SHAREPOINT_CLIENT_ID, SHAREPOINT_CLIENT_SECRET
from storage import ErrorKind, SCHEMA_HINT, classify
from telemetry import setup_telemetry
from upstream import RESEARCH_SERVICE_URL, UpstreamError

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("project-hub")

SERVICE_NAME = "project-hub"
VERSION = "1.0.0"


def _check_startup_config():
    """Warn about optional integrations that are not configured."""
    warnings = []

    if not IDENTITY_SERVICE_URL:
        warnings.append("IDENTITY_SERVICE_URL not set: every caller is anonymous and guarded routes answer 401")
    if not RESEARCH_SERVICE_URL:
        warnings.append("RESEARCH_SERVICE_URL not set: file ingestion and RAG features disabled")
    if not (SHAREPOINT_TENANT_ID and SHAREPOINT_CLIENT_ID and SHAREPOINT_CLIENT_SECRET):
        logger.info("SharePoint pull disabled (SHAREPOINT_* credentials not set)")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {SERVICE_NAME} v{VERSION}...")
    await init_db()
    _check_startup_config()
    # No-op unless OTEL_EXPORTER_OTLP_ENDPOINT is set
    setup_telemetry(app, engine)
    yield
    logger.info(f"Shutting down {SERVICE_NAME}...")
    await close_db()


app = FastAPI(
    title="Project Hub",
    description="Project collaboration API: membership, tasks, content, files and research proxy",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173"
    ).split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    correlation_id = request.headers.get("X-Correlation-ID", request_id)
    request.state.request_id = request_id
    request.state.correlation_id = correlation_id

    start = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Response-Time"] = f"{duration:.4f}s"

    logger.info(
        f"{request.method} {request.url.path} → {response.status_code} "
        f"({duration:.3f}s) [rid={request_id[:8]}]"
    )
    return response


# ============================================================
# MIDDLEWARE: Security Headers
# ============================================================

@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

def _request_id(request: Request):
    return getattr(request.state, "request_id", None)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Dict details (409 transition, 403 can_request) are already error bodies
    if isinstance(exc.detail, dict):
        content = dict(exc.detail)
    else:
        content = {"error": exc.detail}
    content["request_id"] = _request_id(request)
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Sanitise errors to ensure JSON serialisability
    errors = []
    for err in exc.errors():
        clean_err = {
            "type": str(err.get("type", "unknown")),
            "loc": list(err.get("loc", [])),
            "msg": str(err.get("msg", "")),
        }
        if "input" in err:
            try:
                json.dumps(err["input"])
                clean_err["input"] = err["input"]
            except (TypeError, ValueError):
                clean_err["input"] = str(err["input"])
        errors.append(clean_err)

    return JSONResponse(
        status_code=422,
        content={"error": "Validation failed", "detail": errors, "request_id": _request_id(request)},
    )


@app.exception_handler(UpstreamError)
async def upstream_exception_handler(request: Request, exc: UpstreamError):
    return JSONResponse(
        status_code=exc.status_code,
        content={**exc.to_body(), "request_id": _request_id(request)},
    )


@app.exception_handler(SQLAlchemyError)
async def storage_exception_handler(request: Request, exc: SQLAlchemyError):
    kind = classify(exc)
    if kind == ErrorKind.SCHEMA_MISSING:
        logger.error(f"Schema missing on {request.method} {request.url.path}: {getattr(exc, 'orig', exc)}")
        status, message = 503, SCHEMA_HINT
    elif kind == ErrorKind.CONFLICT:
        status, message = 409, "Conflicting write, the record already exists"
    else:
        logger.error(f"Storage error on {request.method} {request.url.path}: {exc}", exc_info=True)
        status, message = 500, "Storage operation failed"
    return JSONResponse(status_code=status, content={"error": message, "request_id": _request_id(request)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "request_id": _request_id(request)},
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import (
    auth, projects, members, tasks, milestones, documents, notes,
    chat, runs, files, rag,
)

app.include_router(auth.router)
app.include_router(projects.router)
app.include_router(members.router)
app.include_router(tasks.router)
app.include_router(milestones.router)
app.include_router(documents.router)
app.include_router(notes.router)
app.include_router(chat.router)
app.include_router(runs.router)
app.include_router(files.router)
app.include_router(rag.router)


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/health")
async def health_check():
    """Health check with database connectivity verification"""
    db_status = "unknown"
    try:
        async with get_db_context() as db:
            await db.execute(text("SELECT 1"))
        db_status = "connected"
    except (SQLAlchemyError, OSError) as e:
        db_status = f"error: {str(e)[:100]}"

    return {
        "ok": db_status == "connected",
        "service": SERVICE_NAME,
        "version": VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": db_status,
    }


@app.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": VERSION,
        "health": "/health",
        "api": "/api",
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("ENVIRONMENT") != "production",
    )
