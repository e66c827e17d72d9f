"""FastAPI application for the EduVerse certificate service.

Run locally with ``uvicorn main:app --reload`` from the api/ directory.
"""

import logging
from contextlib import asynccontextmanager

import fastapi
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from core.config import Settings, get_settings
from core.http_client import close_http_client
from core.logger import configure_logging
from core.ratelimit import limiter, rate_limit_exceeded_handler
from core.telemetry import RequestTimingMiddleware
from routes import certificates_router, health_router
from schemas import CertificateErrorResponse, ErrorCode, UploadErrorDetail

configure_logging()
logger = logging.getLogger(__name__)


def _error_response(
    status_code: int, code: ErrorCode, message: str, details: dict | None = None
) -> JSONResponse:
    body = CertificateErrorResponse(
        error=UploadErrorDetail(
            code=code.value, message=message, details=details, retryable=False
        )
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything a route did not turn into a failure envelope ends up here."""
    logger.exception(
        "unhandled.exception",
        extra={
            "exc_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return _error_response(
        500,
        ErrorCode.CERTIFICATE_GENERATION_FAILED,
        "An unexpected error occurred. Please try again.",
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    logger.warning(
        "request.validation_error",
        extra={"path": request.url.path, "error_count": len(errors)},
    )
    return _error_response(
        422, ErrorCode.VALIDATION_ERROR, "Invalid request body", {"errors": errors}
    )


@asynccontextmanager
async def lifespan(app: fastapi.FastAPI):
    settings = get_settings()
    if not settings.debug and settings.ratelimit_storage_uri == "memory://":
        logger.warning(
            "In-memory rate limiting is per process. "
            "Set RATELIMIT_STORAGE_URI to a Redis URL when running replicas."
        )
    logger.info(
        "init.complete",
        extra={
            "template_url": settings.template_url,
            "signed_url_expiry_seconds": settings.signed_url_expiry_seconds,
        },
    )
    try:
        yield
    finally:
        await close_http_client()


def create_app(settings: Settings | None = None) -> fastapi.FastAPI:
    settings = settings or get_settings()
    show_docs = settings.enable_docs or settings.debug

    application = fastapi.FastAPI(
        title="EduVerse Certificate API",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if show_docs else None,
        redoc_url="/redoc" if show_docs else None,
        openapi_url="/openapi.json" if show_docs else None,
    )

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    application.add_exception_handler(
        RequestValidationError, validation_exception_handler
    )
    application.add_exception_handler(Exception, global_exception_handler)

    application.add_middleware(RequestTimingMiddleware)

    application.include_router(health_router)
    application.include_router(certificates_router)
    return application


app = create_app()
