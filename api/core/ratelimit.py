"""Per-client request limits for the certificate endpoints (slowapi).

memory:// storage is per process. Behind several workers or replicas set
RATELIMIT_STORAGE_URI to a Redis URL so the limits are shared.
"""

import logging

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from core.config import get_settings
from schemas import CertificateErrorResponse, UploadErrorDetail

logger = logging.getLogger(__name__)

# Each generation renders a 6250x4419 raster and makes two uploads
CERTIFICATE_GENERATION_LIMIT = "10/minute"
SIGNED_URL_LIMIT = "60/minute"
DEFAULT_LIMIT = "100/minute"

_storage_uri = get_settings().ratelimit_storage_uri

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[DEFAULT_LIMIT],
    storage_uri=_storage_uri,
    # Keep limiting in-process while Redis is unreachable
    in_memory_fallback_enabled=_storage_uri.startswith("redis://"),
    key_prefix="cert:",
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """429 in the same error envelope the certificate routes use."""
    retry_after = getattr(exc, "retry_after", 60)
    logger.warning(
        "ratelimit.exceeded",
        extra={"client": get_remote_address(request), "limit": exc.detail},
    )
    body = CertificateErrorResponse(
        error=UploadErrorDetail(
            code="RATE_LIMITED",
            message="Rate limit exceeded. Please slow down.",
            details={"limit": exc.detail, "retryAfterSeconds": retry_after},
            retryable=True,
        )
    )
    return JSONResponse(
        status_code=429,
        content=body.model_dump(mode="json"),
        headers={"Retry-After": str(retry_after)},
    )
