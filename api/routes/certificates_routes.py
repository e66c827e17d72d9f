"""Certificate generation and signed URL endpoints."""

from typing import Annotated

from circuitbreaker import CircuitBreakerError
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from core.logger import get_logger
from core.ratelimit import CERTIFICATE_GENERATION_LIMIT, SIGNED_URL_LIMIT, limiter
from core.wide_event import set_wide_event_fields
from schemas import (
    CertificateErrorResponse,
    CertificateGenerationRequest,
    CertificateSuccessResponse,
    ErrorCode,
    PipelineFailure,
    SignedUrlRefreshRequest,
    SignedUrlRefreshResponse,
    UploadErrorDetail,
)
from services.certificate_pipeline import (
    CertificatePipeline,
    build_certificate_request,
    get_certificate_pipeline,
    refresh_signed_url,
)
from services.storage_client import StorageClient, StorageError, get_storage_client

logger = get_logger(__name__)

router = APIRouter(tags=["certificates"])

PipelineDep = Annotated[CertificatePipeline, Depends(get_certificate_pipeline)]
StorageDep = Annotated[StorageClient, Depends(get_storage_client)]


def _failure_status(failure: PipelineFailure) -> int:
    if failure.stage == ErrorCode.VALIDATION_ERROR:
        return 422
    if failure.retryable:
        return 503
    return 500


def _error_response(
    status_code: int,
    code: str,
    message: str,
    retryable: bool,
    details: dict | None = None,
) -> JSONResponse:
    body = CertificateErrorResponse(
        error=UploadErrorDetail(
            code=code, message=message, details=details, retryable=retryable
        )
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@router.post(
    "/api/certificates/generate",
    response_model=CertificateSuccessResponse,
    status_code=201,
    responses={
        422: {"model": CertificateErrorResponse, "description": "Invalid request"},
        500: {"model": CertificateErrorResponse, "description": "Generation failed"},
        503: {"model": CertificateErrorResponse, "description": "Retry later"},
    },
)
@limiter.limit(CERTIFICATE_GENERATION_LIMIT)
async def generate_certificate_endpoint(
    request: Request,
    body: CertificateGenerationRequest,
    pipeline: PipelineDep,
) -> CertificateSuccessResponse | JSONResponse:
    """Render a certificate and publish it with its metadata document."""
    try:
        certificate_request = build_certificate_request(body)
    except ValidationError as e:
        return _error_response(
            422,
            ErrorCode.VALIDATION_ERROR.value,
            "Invalid certificate request",
            retryable=False,
            details={"errors": e.errors(include_url=False, include_context=False)},
        )

    result = await pipeline.run(certificate_request)
    if isinstance(result, PipelineFailure):
        response = result.to_response()
        return JSONResponse(
            status_code=_failure_status(result),
            content=response.model_dump(mode="json"),
        )
    return result.to_response()


@router.post(
    "/api/ipfs/refresh-signed-url",
    response_model=SignedUrlRefreshResponse,
    responses={
        500: {"model": CertificateErrorResponse, "description": "Storage rejected"},
        503: {"model": CertificateErrorResponse, "description": "Retry later"},
    },
)
@limiter.limit(SIGNED_URL_LIMIT)
async def refresh_signed_url_endpoint(
    request: Request,
    body: SignedUrlRefreshRequest,
    storage: StorageDep,
) -> SignedUrlRefreshResponse | JSONResponse:
    """Issue a new signed URL for a previously published CID."""
    set_wide_event_fields(cid=body.cid)
    try:
        return await refresh_signed_url(storage, body.cid, body.expiry_seconds)
    except StorageError as e:
        logger.warning(
            "certificate.signed_url.refresh_failed", cid=body.cid, code=e.code
        )
        return _error_response(
            503 if e.retryable else 500,
            e.code,
            "Failed to create signed URL",
            retryable=e.retryable,
        )
    except CircuitBreakerError:
        return _error_response(
            503, "CIRCUIT_OPEN", "Storage temporarily unavailable", retryable=True
        )
