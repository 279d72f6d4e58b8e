import time
import uuid
from datetime import datetime

import sentry_sdk
import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from storefront.api.v1 import admin, cart, orders
from storefront.core.config import settings
from storefront.core.exceptions import APIError
from storefront.core.logging_config import configure_logging
from storefront.core.rate_limiter import limiter
from storefront.db.session import engine

API_VERSION = "1.0.0"

CORRELATION_HEADER = "X-Correlation-ID"
REQUEST_ID_HEADER = "X-Request-ID"


def standardized_error_response(status_code: int, message: str, errors=None) -> JSONResponse:
    """Failure envelope shared by every handler below."""
    body = {
        "success": False,
        "message": message,
        "data": None,
        "errors": errors or [],
        "timestamp": f"{datetime.utcnow().isoformat()}Z",
    }
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def _http_error_parts(detail):
    if isinstance(detail, str):
        return detail, []
    if isinstance(detail, dict):
        return detail.get("message", "Request failed"), detail.get("errors", [])
    if isinstance(detail, list):
        return "Request failed", detail
    return "Request failed", []


# Logging first so Sentry and app startup events are structured
configure_logging()
logger = structlog.get_logger()

if settings.ENVIRONMENT == "production" and settings.SENTRY_DSN:
    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            release=f"storefront-orders@{API_VERSION}",
            traces_sample_rate=0.1,
            integrations=[FastApiIntegration(), SqlalchemyIntegration()],
        )
        logger.info("sentry_initialized", release=API_VERSION)
    except Exception as exc:
        logger.warning("sentry_init_failed", error=str(exc))

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=API_VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
    redoc_url=f"{settings.API_V1_STR}/redoc",
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

# Shop and dashboard send cookies, so their origins must be listed exactly
allowed_origins = list(dict.fromkeys([*settings.BACKEND_CORS_ORIGINS, settings.FRONTEND_URL, settings.ADMIN_URL]))
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin for origin in allowed_origins if origin],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", CORRELATION_HEADER, settings.SESSION_HEADER],
    expose_headers=["X-Process-Time", REQUEST_ID_HEADER, CORRELATION_HEADER],
    max_age=3600,
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Bind request and correlation ids for structlog, time the call and
    stamp tracing and security headers on the response."""
    correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.bind_contextvars(request_id=request_id, correlation_id=correlation_id)

    started = time.perf_counter()
    logger.info("request_started", method=request.method, path=request.url.path)
    try:
        response = await call_next(request)
    finally:
        structlog.contextvars.unbind_contextvars("request_id", "correlation_id")
    elapsed = time.perf_counter() - started

    logger.info(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        request_id=request_id,
        duration_ms=round(elapsed * 1000, 2),
    )

    response.headers[REQUEST_ID_HEADER] = request_id
    response.headers[CORRELATION_HEADER] = correlation_id
    response.headers["X-Process-Time"] = f"{elapsed:.6f}"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    if settings.ENVIRONMENT == "production":
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


app.include_router(cart.router, prefix=f"{settings.API_V1_STR}/cart", tags=["Cart"])
app.include_router(orders.router, prefix=f"{settings.API_V1_STR}/orders", tags=["Orders"])
app.include_router(admin.router, prefix=f"{settings.API_V1_STR}/admin", tags=["Admin"])


@app.get("/health", tags=["Health"])
def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT, "version": API_VERSION}


@app.get("/health/database", tags=["Health"])
def database_health_check():
    """Liveness of the order database. Failure details go to the log only."""
    try:
        with engine.connect() as connection:
            connection.exec_driver_sql("SELECT 1")
    except Exception as exc:
        logger.warning("database_health_check_failed", error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": engine.dialect.name},
        )

    pool = engine.pool
    return {
        "status": "healthy",
        "database": engine.dialect.name,
        "pool": {
            "class": type(pool).__name__,
            "checked_out": pool.checkedout() if hasattr(pool, "checkedout") else None,
        },
    }


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("rate_limit_exceeded", path=request.url.path, limit=str(exc.detail))
    return standardized_error_response(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        message="Too many requests. Please try again later.",
    )


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    logger.info("api_error", status_code=exc.status_code, message=exc.message, path=request.url.path)
    return standardized_error_response(exc.status_code, exc.message, exc.errors)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    message, errors = _http_error_parts(exc.detail)
    response = standardized_error_response(exc.status_code, message, errors)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return standardized_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation failed",
        errors=exc.errors(),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_exception", error_type=type(exc).__name__, path=request.url.path)
    errors = [{"type": type(exc).__name__}] if settings.DEBUG and settings.ENVIRONMENT != "production" else []
    return standardized_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        errors=errors,
    )
