# main.py
# Responsible for:
# Creating the FastAPI app instance.
# Configuring logging, Sentry and middleware (CORS, Request ID, Logging, Security, Rate Limiting).
# Application lifecycle (tables, storage cleanup).
# Including the routers, which contain the actual endpoint logic.
import uuid
import time
import logging
from contextvars import ContextVar
from pythonjsonlogger import jsonlogger
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest # Renamed to avoid shadowing
from starlette.responses import Response as StarletteResponse

from jose import jwt, JWTError

from slowapi.errors import RateLimitExceeded
from limits.util import parse_many
from rate_limiter import limiter, get_dynamic_rate_limit

from config import SECRET_KEY, ALGORITHM, SENTRY_DSN, FRONTEND_URL, PROCESSED_DIR, FILE_RETENTION_DAYS
from db.database import create_db_and_tables
from dependencies import get_storage
from services.file_storage import PROCESSED_URL_BASE
from routers import auth as auth_router
from routers import users as users_router
from routers import health as health_router
from routers import enhancement as enhancement_router
from routers import photos as photos_router

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

from typing import Callable, Awaitable, Optional

RequestResponseCall = Callable[[StarletteRequest], Awaitable[StarletteResponse]]


# --- Logging Configuration ---
# Configure this early so all subsequent modules can use it.
log_handler = logging.StreamHandler()
formatter = jsonlogger.JsonFormatter(
    '%(asctime)s %(levelname)s %(name)s %(module)s %(funcName)s %(lineno)d %(message)s '
    '%(request_id)s %(user_id)s %(path)s %(method)s %(status_code)s %(response_time_ms)s'
)
log_handler.setFormatter(formatter)

# Root logger captures logs from all libraries (e.g., sqlalchemy, uvicorn)
root_logger = logging.getLogger()
root_logger.setLevel(logging.INFO)
for handler in root_logger.handlers[:]:
    root_logger.removeHandler(handler)
root_logger.addHandler(log_handler)

logger = logging.getLogger(__name__)

# Set per request by RequestIdMiddleware; each request runs in its own context copy.
request_id_var: ContextVar[str] = ContextVar("request_id", default="N/A")
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

_base_log_record_factory = logging.getLogRecordFactory()


def request_context_log_record_factory(*args, **kwargs):
    record = _base_log_record_factory(*args, **kwargs)
    record.request_id = request_id_var.get()
    record.user_id = user_id_var.get()
    return record


# Installed once; never swapped per request.
logging.setLogRecordFactory(request_context_log_record_factory)


# --- Sentry Initialization ---
if SENTRY_DSN and SENTRY_DSN != "your-sentry-dsn-goes-here":
    sentry_logging = LoggingIntegration(
        level=logging.INFO,        # Breadcrumbs level
        event_level=logging.ERROR  # Event level
    )
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[sentry_logging],
        traces_sample_rate=1.0,
    )
    logger.info("Sentry initialized.")
else:
    logger.warning("Sentry DSN not found or is a placeholder. Sentry will not be initialized.")


# --- Middleware Definitions ---

class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: StarletteRequest, call_next: RequestResponseCall) -> StarletteResponse:
        request_id = uuid.uuid4().hex
        request.state.request_id = request_id

        user_id_for_log = "anonymous"
        auth_header = request.headers.get("authorization", "")
        if auth_header.lower().startswith("bearer "):
            try:
                payload = jwt.decode(auth_header[7:], SECRET_KEY, algorithms=[ALGORITHM])
                user_id_for_log = payload.get("user_id") or payload.get("sub") or user_id_for_log
            except JWTError:
                pass  # Token is invalid or expired. Fine for logging.

        request.state.user_id = user_id_for_log

        request_id_token = request_id_var.set(request_id)
        user_id_token = user_id_var.set(user_id_for_log)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(request_id_token)
            user_id_var.reset(user_id_token)

        response.headers['X-Request-ID'] = request_id
        return response

class ResponseTimeLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: StarletteRequest, call_next: RequestResponseCall) -> StarletteResponse:
        start_time = time.time()
        response = await call_next(request)
        process_time_ms = (time.time() - start_time) * 1000

        # request_id and user_id are added by request_context_log_record_factory.
        log_details = {
            "path": request.url.path,
            "method": request.method,
            "status_code": response.status_code,
            "response_time_ms": round(process_time_ms, 2)
        }
        logger.info("Request processed", extra=log_details)
        return response

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: StarletteRequest, call_next: RequestResponseCall) -> StarletteResponse:
        response = await call_next(request)
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Content-Security-Policy'] = "default-src 'self'; img-src 'self' data:; object-src 'none'; frame-ancestors 'none';"
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        return response

class RateLimitHeaderMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: StarletteRequest, call_next: RequestResponseCall) -> StarletteResponse:
        response = await call_next(request)

        # Set on request.state by the limiter's key function, only for rate limited routes.
        key = getattr(request.state, 'rate_limit_key', None)
        if not key:
            return response

        # 'remaining' is not available without hitting the limiter again, so only the limit is reported.
        limit_list = parse_many(get_dynamic_rate_limit(key))
        if limit_list:
            response.headers["X-RateLimit-Limit"] = str(limit_list[0].amount)
        return response


async def custom_rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Custom handler to add rate limit headers to 429 responses."""
    response = JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"detail": f"Rate limit exceeded: {exc.detail}"}
    )
    limit = getattr(exc, "limit", None)
    if limit is not None:
        response.headers["X-RateLimit-Limit"] = str(limit.limit.amount)
        response.headers["X-RateLimit-Remaining"] = "0"
    else:
        logger.warning("Could not add rate limit headers to 429 response: limit not found on exception.")
    return response


# --- Application Events ---

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    create_db_and_tables()
    logger.info("Database tables checked/created.")
    storage = get_storage()
    storage.cleanup_old_files(days_old=FILE_RETENTION_DAYS)
    yield
    logger.info("Application shutting down.")


app = FastAPI(
    lifespan=lifespan,
    title="Food Photo Enhancement API",
    description="Upload food photos and get them back enhanced by AI or by the local filter pipeline.",
    version="1.0.0"
)

# Enhanced images and thumbnails. check_dir=False: LocalStorage creates the directory.
app.mount(PROCESSED_URL_BASE, StaticFiles(directory=PROCESSED_DIR, check_dir=False), name="processed")

# Add Rate Limiter state and exception handler
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, custom_rate_limit_exceeded_handler)

# Middlewares: the last added is the outermost
app.add_middleware(RateLimitHeaderMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ResponseTimeLoggingMiddleware)
app.add_middleware(RequestIdMiddleware)


# --- Include Routers ---
app.include_router(auth_router.router, tags=["Authentication"])
app.include_router(users_router.router, tags=["Users"])
app.include_router(health_router.router, tags=["Health"])
app.include_router(enhancement_router.router, tags=["Enhancement"])
app.include_router(photos_router.router, tags=["Photos"])


# --- Root Endpoint ---
@app.get("/", tags=["Root"])
async def root():
    """Confirms the API is running and lists the main endpoints."""
    return {
        "message": "Food Photo Enhancement API is running.",
        "endpoints": {
            "auth": "/api/auth",
            "users": "/api/users",
            "enhance_single": "/api/enhance/single",
            "enhance_batch": "/api/enhance/batch",
            "photos": "/api/enhance/photos",
            "health": "/api/health",
        },
    }
