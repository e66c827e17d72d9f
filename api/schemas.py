"""Pydantic schemas for certificate generation and the API surface."""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from core.config import MAX_SIGNED_URL_EXPIRY_SECONDS

# Safe for use inside upload filenames
CERTIFICATE_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]*$"


class ErrorCode(str, Enum):
    """Pipeline failure taxonomy, one kind per stage plus a catch-all."""

    TEMPLATE_FETCH_FAILED = "TEMPLATE_FETCH_FAILED"
    COMPOSITION_FAILED = "COMPOSITION_FAILED"
    QR_ENCODE_FAILED = "QR_ENCODE_FAILED"
    OPTIMIZE_FAILED = "OPTIMIZE_FAILED"
    IMAGE_UPLOAD_FAILED = "IMAGE_UPLOAD_FAILED"
    METADATA_UPLOAD_FAILED = "METADATA_UPLOAD_FAILED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CERTIFICATE_GENERATION_FAILED = "CERTIFICATE_GENERATION_FAILED"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# ============ Pipeline Input ============


class CertificateRequest(_CamelModel):
    """Immutable input for one pipeline invocation."""

    student_name: str = Field(min_length=1, max_length=200)
    course_name: str = Field(min_length=1, max_length=300)
    course_id: str = Field(min_length=1, max_length=78)
    completion_date: str = Field(min_length=1, max_length=64)
    instructor_name: str = Field(min_length=1, max_length=200)
    certificate_id: str = Field(
        min_length=1, max_length=128, pattern=CERTIFICATE_ID_PATTERN
    )
    wallet_address: str = Field(default="", max_length=128)

    @field_validator("course_id", mode="before")
    @classmethod
    def coerce_course_id(cls, v: Any) -> Any:
        """On-chain course IDs arrive as integers; they are rendered as text."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("student_name", "course_name", "instructor_name")
    @classmethod
    def strip_ends(cls, v: str) -> str:
        """Trim surrounding whitespace; inner spacing is printed as submitted."""
        cleaned = v.strip()
        if not cleaned:
            raise ValueError("must not be blank")
        return cleaned


class CertificateGenerationRequest(_CamelModel):
    """HTTP request body; optional fields are filled in by the service."""

    student_name: str = Field(min_length=1, max_length=200)
    course_name: str = Field(min_length=1, max_length=300)
    course_id: str | int
    completion_date: str | None = None
    instructor_name: str | None = None
    certificate_id: str | None = Field(
        default=None, max_length=128, pattern=CERTIFICATE_ID_PATTERN
    )
    wallet_address: str | None = None


# ============ Metadata Document ============


class MetadataAttribute(BaseModel):
    model_config = ConfigDict(frozen=True)

    trait_type: str
    value: str


class CertificateMetadata(BaseModel):
    """NFT-style metadata document referencing the certificate image CID."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    image: str
    attributes: tuple[MetadataAttribute, ...]


# ============ Pipeline Results ============


class PublishedAsset(BaseModel):
    """An object committed to private storage plus its signed access URL."""

    model_config = ConfigDict(frozen=True)

    content_id: str
    pinata_id: str
    name: str
    size_bytes: int
    mime_type: str
    signed_url: str
    signed_url_expiry: int  # Unix timestamp in milliseconds
    uploaded_at: str


class PipelineSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: Literal[True] = True
    image: PublishedAsset
    metadata: PublishedAsset

    def to_response(self) -> "CertificateSuccessResponse":
        return CertificateSuccessResponse(
            data=CertificateUploadData(
                cid=self.image.content_id,
                pinata_id=self.image.pinata_id,
                name=self.image.name,
                size=self.image.size_bytes,
                mime_type=self.image.mime_type,
                signed_url=self.image.signed_url,
                expires_at=self.image.signed_url_expiry,
                uploaded_at=self.image.uploaded_at,
                metadata_cid=self.metadata.content_id,
                metadata_signed_url=self.metadata.signed_url,
                metadata_expires_at=self.metadata.signed_url_expiry,
            )
        )


class PipelineFailure(BaseModel):
    """Terminal failure value.

    ``stage`` is the taxonomy code of the stage that failed; ``code`` is the
    finer-grained cause (e.g. NETWORK_ERROR). ``image`` is set only when the
    image was committed before the metadata stage failed.
    """

    model_config = ConfigDict(frozen=True)

    success: Literal[False] = False
    stage: ErrorCode
    code: str
    message: str
    retryable: bool
    image: PublishedAsset | None = None
    details: dict[str, Any] | None = None

    def to_response(self) -> "CertificateErrorResponse":
        details: dict[str, Any] = dict(self.details or {})
        if self.code != self.stage.value:
            details["reason"] = self.code
        if self.image is not None:
            details["image"] = {
                "cid": self.image.content_id,
                "signedUrl": self.image.signed_url,
                "expiresAt": self.image.signed_url_expiry,
            }
        return CertificateErrorResponse(
            error=UploadErrorDetail(
                code=self.stage.value,
                message=self.message,
                details=details or None,
                retryable=self.retryable,
            )
        )


PipelineResult = PipelineSuccess | PipelineFailure


# ============ API Responses ============


class CertificateUploadData(_CamelModel):
    cid: str
    pinata_id: str
    name: str
    size: int
    mime_type: str
    signed_url: str
    expires_at: int
    uploaded_at: str
    network: Literal["private"] = "private"
    metadata_cid: str = Field(alias="metadataCID")
    metadata_signed_url: str
    metadata_expires_at: int


class CertificateSuccessResponse(BaseModel):
    success: Literal[True] = True
    data: CertificateUploadData


class UploadErrorDetail(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    details: dict[str, Any] | None = None
    retryable: bool


class CertificateErrorResponse(BaseModel):
    success: Literal[False] = False
    error: UploadErrorDetail


class SignedUrlRefreshRequest(_CamelModel):
    """Request a fresh signed URL for an existing CID."""

    cid: str = Field(min_length=1, max_length=128)
    expiry_seconds: int = Field(default=7200, gt=0, le=MAX_SIGNED_URL_EXPIRY_SECONDS)


class SignedUrlRefreshResponse(_CamelModel):
    signed_url: str
    expires_at: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
