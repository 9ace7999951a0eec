# Essential imports
import time
from fastapi import FastAPI, Request, status, HTTPException
from fastapi.exceptions import RequestValidationError
from routers import auth, users, internal
from contextlib import asynccontextmanager

# Import all models for SQLAlchemy relationship resolution
import models  # This triggers the imports in models/__init__.py
from core.database import Base, engine

# Volatile store, notification queue and federated sign-in
from core.cache import create_store
from core.queue import create_notification_queue
from services.identity_providers import IdentityProviderRegistry
from services.rate_limiter import create_request_quota
from redis.exceptions import RedisError
from sqlalchemy.exc import OperationalError

# Rate limiter imports
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from middleware.rate_limiter import limiter

# Logging imports
from core.logging_config import setup_logging
from middleware import RequestIDMiddleware, RequestQuotaMiddleware, get_request_id, get_client_ip
from utils.logger import get_logger, log_request
from core.config import settings
from core.exceptions import ServiceUnavailableError
from fastapi.responses import JSONResponse

# CORS imports
from fastapi.middleware.cors import CORSMiddleware

# Initialize logging
setup_logging(
    log_level=settings.LOG_LEVEL,
    log_dir=settings.LOG_DIR
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)

    app.state.cache = create_store(settings.REDIS_URL, timeout=settings.STORE_TIMEOUT_SECONDS)
    app.state.quota = create_request_quota(settings.REDIS_URL, timeout=settings.STORE_TIMEOUT_SECONDS)
    app.state.notifications = create_notification_queue(
        settings.NOTIFICATION_QUEUE_URL,
        settings.NOTIFICATION_QUEUE_NAME,
        settings.NOTIFICATION_QUEUE_MAX_LENGTH,
        timeout=settings.STORE_TIMEOUT_SECONDS
    )
    app.state.identity_providers = IdentityProviderRegistry()

    logger.info("Application startup complete", extra={"event": "startup", "env": settings.ENV})
    yield

    app.state.notifications.close()
    app.state.cache.close()
    logger.info("Application shutting down", extra={"event": "shutdown"})


app = FastAPI(
    title="Auth Service",
    description="Credential and token lifecycle service",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


# Admission control runs before any route code
app.add_middleware(RequestQuotaMiddleware)


# HTTP Request Logging Middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log all HTTP requests with method, path, status code, and duration.
    """
    start_time = time.time()

    response = await call_next(request)

    duration = (time.time() - start_time) * 1000

    log_request(
        logger,
        request.method,
        request.url.path,
        response.status_code,
        duration,
        client_ip=get_client_ip(request)
    )

    return response


# CORS configuration, outside the quota so 429 and 503 answers carry the headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,                    # Refresh cookie
    allow_methods=["*"],
    allow_headers=["*"],
)


# Added last so it wraps everything above and every record carries the id
app.add_middleware(RequestIDMiddleware)


# Health check
@app.get("/health")
async def health_check():
    logger.debug("Health check requested")
    return {"status": "Healthy"}


def service_unavailable() -> JSONResponse:
    error = ServiceUnavailableError()
    return JSONResponse(status_code=error.status_code, content={"detail": error.detail})


@app.exception_handler(RedisError)
async def store_unavailable_handler(request: Request, exc: RedisError):
    """The volatile store is required for every token check; fail closed."""
    logger.error(
        f"Volatile store unavailable: {str(exc)}",
        extra={"path": request.url.path, "error_type": type(exc).__name__}
    )
    return service_unavailable()


@app.exception_handler(OperationalError)
async def database_unavailable_handler(request: Request, exc: OperationalError):
    logger.error(
        "Database unavailable",
        extra={"path": request.url.path, "error_type": type(exc).__name__}
    )
    return service_unavailable()


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Catch all unhandled exceptions and log them.
    Returns a generic error without exposing internals.
    """
    # Skip if it's an HTTPException or validation error (FastAPI handles these)
    if isinstance(exc, (HTTPException, RequestValidationError)):
        raise exc

    logger.error(
        f"Unhandled exception: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "request_id": get_request_id(request)
        },
        exc_info=True  # Include full stack trace
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )


# Including routers
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(internal.router)


# Add rate limiter to the app
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
