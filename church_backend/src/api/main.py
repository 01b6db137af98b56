import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from src.api.admins import router as admins_router
from src.api.auth import router as auth_router
from src.api.config import Settings
from src.api.context import AppContext
from src.api.errors import ChurchApiError
from src.api.kontingent import router as kontingent_router
from src.api.logging_config import configure_logging
from src.api.members import router as members_router
from src.api.models import Base
from src.api.openapi_schemas import openapi_tags
from src.api.rate_limit import RateLimitMiddleware, SlidingWindowLimiter, get_client_ip
from src.api.sms import router as sms_router

logger = logging.getLogger(__name__)

SERVICE_NAME = "Church Members API"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and duration of every request."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time
        logger.info(
            "%s %s | Status: %s | Duration: %.3fs | IP: %s",
            request.method, request.url.path, response.status_code, duration, get_client_ip(request),
        )
        return response


def _format_validation_errors(exc: RequestValidationError):
    """Flatten pydantic errors into {field, message} pairs."""
    details = []
    for err in exc.errors():
        loc = err.get("loc", [])
        details.append({
            "source": loc[0] if loc else "body",
            "field": loc[-1] if len(loc) > 1 else None,
            "message": err.get("msg"),
        })
    return details


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)

    @app.exception_handler(ChurchApiError)
    async def church_api_error_handler(request: Request, exc: ChurchApiError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Request validation failed", "details": _format_validation_errors(exc)},
        )

    @app.exception_handler(PoolTimeoutError)
    async def pool_timeout_handler(request: Request, exc: PoolTimeoutError):
        logger.error("Database connection pool exhausted on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "Service temporarily unavailable, please retry"},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )


# PUBLIC_INTERFACE
def create_app(settings: Optional[Settings] = None, context: Optional[AppContext] = None) -> FastAPI:
    """
    Build the FastAPI application. The AppContext is created here, once, and stored on
    app.state so request dependencies can reach it.
    """
    settings = settings or (context.settings if context else Settings.from_env())
    context = context or AppContext.build(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level, settings.log_format)
        logger.info("Starting %s (SMS provider: %s)", SERVICE_NAME, settings.sms_provider)
        try:
            Base.metadata.create_all(bind=context.engine)
        except OperationalError:
            logger.exception("Failed to connect to database during table creation")
        yield
        logger.info("Shutting down %s", SERVICE_NAME)
        context.close()

    app = FastAPI(
        title=SERVICE_NAME,
        description="Member registry, membership dues and SMS broadcasts for church administrators.",
        version="1.0.0",
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    app.state.context = context

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        limiter=SlidingWindowLimiter(settings.rate_limit_max_requests, settings.rate_limit_window_seconds),
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.frontend_urls,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
    if settings.forwarded_allow_ips:
        # Outermost, so the limiter and request log see the client behind a trusted proxy
        app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=settings.forwarded_allow_ips)

    _register_exception_handlers(app)

    app.include_router(auth_router)
    app.include_router(members_router)
    app.include_router(admins_router)
    app.include_router(kontingent_router)
    app.include_router(sms_router)

    @app.get("/health", tags=["Misc"])
    def health_check():
        """Health check endpoint for system uptime monitoring."""
        return {
            "status": "OK",
            "service": SERVICE_NAME,
            "sms_provider": settings.sms_provider,
            "sms_enabled": context.broadcast.provider_ready,
        }

    return app


app = create_app()
