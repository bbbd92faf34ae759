"""
Main FastAPI application for the integration hub.
"""
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.database import init_db
from app.core.exceptions import IntegrationException
from app.core.http_client import close_http_client
from app.core.logging_config import log_error, log_info, log_warning, setup_logging
from app.middleware.request_logging import RequestLoggingMiddleware, request_id_ctx

# -----------------------------------------------------------------------------
# Startup / Shutdown
# -----------------------------------------------------------------------------
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    log_info(f"Starting up {settings.app_name}...")
    try:
        init_db()
        log_info("Database initialization completed!")
    except Exception as exc:
        log_error(exc)
        raise
    yield
    log_info(f"Shutting down {settings.app_name}...")
    try:
        await close_http_client()
        log_info("HTTP client closed")
    except RuntimeError as exc:
        log_warning(f"Failed to close HTTP client: {exc}")


# -----------------------------------------------------------------------------
# App Initialization
# -----------------------------------------------------------------------------
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Connect third-party accounts and sync their data into personal lists",
    openapi_url=f"{settings.api_v1_prefix}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# -----------------------------------------------------------------------------
# Middleware Configuration
# -----------------------------------------------------------------------------
cors_origins = settings.cors_origins or []
if settings.enable_cors:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin", "X-Requested-With", "X-Request-ID"],
        max_age=3600,
    )
    log_info(f"CORS enabled for origins: {cors_origins}")
else:
    log_info("CORS disabled")

app.add_middleware(RequestLoggingMiddleware)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add X-Process-Time header."""
    start_time = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = str(time.time() - start_time)
    return response


# -----------------------------------------------------------------------------
# Exception Handlers
# -----------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle FastAPI request validation errors with detailed logging."""
    request_id = request_id_ctx.get()
    sanitized_errors = [
        {"loc": err.get("loc"), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]

    log_warning(
        "Request validation failed",
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
    )

    return JSONResponse(
        status_code=422,
        content={"error": "validation_error", "message": sanitized_errors, "request_id": request_id},
    )


@app.exception_handler(IntegrationException)
async def integration_exception_handler(request: Request, exc: IntegrationException):
    """Render integration failures with their structured payload and HTTP status."""
    request_id = request_id_ctx.get()
    if exc.status_code >= 500:
        log_error(exc, request_id=request_id, provider=exc.provider, error_code=exc.error_code)
    else:
        log_warning(exc.message, request_id=request_id, provider=exc.provider, error_code=exc.error_code)

    payload = exc.to_payload()
    if settings.environment == "production" and exc.status_code == 500:
        payload["message"] = "An unexpected internal error occurred."
    payload["request_id"] = request_id

    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers = {"Retry-After": str(retry_after)}
    return JSONResponse(status_code=exc.status_code, content=payload, headers=headers)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    request_id = request_id_ctx.get()
    log_error(exc, request_id=request_id)
    msg = (
        "An unexpected error occurred. Please try again later."
        if settings.environment == "production"
        else str(exc)
    )
    return JSONResponse(
        status_code=500,
        content={"error": "internal_server_error", "message": msg, "request_id": request_id},
    )


# -----------------------------------------------------------------------------
# API Routers
# -----------------------------------------------------------------------------
app.include_router(api_router, prefix=settings.api_v1_prefix)


# -----------------------------------------------------------------------------
# Entry Point
# -----------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
