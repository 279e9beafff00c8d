"""
BranchGate REST API - Main Application.

FastAPI application for branch-account authentication.

Usage:
    # Development
    uvicorn branchgate.api.main:app --reload --port 8000

    # Production
    uvicorn branchgate.api.main:app --host 0.0.0.0 --port 8000 --workers 4
"""
import os
import time
import uuid
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from .routes import auth_router, health_router
from ..auth.errors import StoreError
from ..database.connection import get_database

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv(
    "LOG_FORMAT",
    "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
)

# Request ID of the request being served, "-" outside requests
current_request_id: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    """Stamp every log record with the current request ID."""

    def filter(self, record):
        if not hasattr(record, "request_id"):
            record.request_id = current_request_id.get()
        return True


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format=LOG_FORMAT,
    )
    # Handler-level so records propagated from module loggers are covered
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RequestIdFilter) for f in handler.filters):
            handler.addFilter(RequestIdFilter())


configure_logging()
logger = logging.getLogger(__name__)

API_TITLE = "BranchGate API"
API_DESCRIPTION = """
**Branch account authentication**

- **Login** with progressive lockout (5 failures lock the account for 15 minutes)
- **Sessions** as opaque bearer tokens, revocable per device or everywhere
- **Email verification** and **password reset** with single-use tokens
- **Audit trail** of every security event, with sensitive fields redacted

## Authentication

1. Register a provisioned branch: `POST /auth/register`
2. Verify the email: `GET /auth/verify-email/{token}`
3. Login: `POST /auth/login`
4. Use token: `Authorization: Bearer <token>`

## Rate Limits

- Login: 5 attempts per 15 minutes per origin and address
- Verification and password reset emails: 3 per hour
"""
API_VERSION = os.getenv("APP_VERSION", "0.1.0")

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the auth tables on startup if the database is reachable."""
    logger.info(f"Starting BranchGate API v{API_VERSION}")
    try:
        get_database().init_schema()
    except StoreError as e:
        logger.warning(f"Database initialization skipped: {e.detail}")

    yield

    logger.info("Shutting down BranchGate API")


def _register_middleware(app: FastAPI) -> None:
    allowed_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    @app.middleware("http")
    async def track_request(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        request.state.request_id = request_id
        reset_token = current_request_id.set(request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        finally:
            current_request_id.reset(reset_token)

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time-Ms"] = f"{elapsed_ms:.2f}"
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value

        # Health checks would drown everything else
        if not request.url.path.startswith("/health"):
            logger.info(
                f"[{request_id}] {request.method} {request.url.path} "
                f"-> {response.status_code} ({elapsed_ms:.1f}ms)"
            )
        return response


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        problems = [
            f"{' -> '.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "success": False,
                "message": "Invalid request",
                "reason": "validation_error",
                "detail": "; ".join(problems),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(f"[{request_id}] Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "message": "Internal server error",
                "reason": "internal_error",
                "request_id": request_id,
            },
        )


def create_app() -> FastAPI:
    """
    Build the FastAPI application.

    Returns:
        Configured FastAPI instance.
    """
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    _register_middleware(app)
    _register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(auth_router)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": API_TITLE,
            "version": API_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "branchgate.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=os.getenv("APP_ENV") == "development",
        log_level="info",
    )
