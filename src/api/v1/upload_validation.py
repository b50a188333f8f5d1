"""
Upload Validation Endpoint

POST /api/v1/upload-validation - Integrity check for a file before upload
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from src.api.dependencies import get_admission, get_client_identifier, get_services
from src.core.config import settings
from src.core.exceptions import ImageValidationError
from src.core.logging import get_logger
from src.core.metrics import record_validation_rejection
from src.engines.admission.limiter import AdmissionController
from src.engines.imaging.validator import ValidationErrorKind, parse_data_url
from src.pipeline.container import ServiceContainer

logger = get_logger(__name__)
router = APIRouter()


class UploadValidationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(..., alias="mimeType")
    size: int = Field(..., ge=0, description="Declared size in bytes")
    base64_data: str = Field(..., alias="base64Data", description="Raw base64 or a data URL")


@router.post("/upload-validation")
async def validate_upload(
    request: UploadValidationRequest,
    identifier: str = Depends(get_client_identifier),
    admission: AdmissionController = Depends(get_admission),
    services: ServiceContainer = Depends(get_services)
):
    """Returns `{"valid": true}` or a 400 with the integrity error code."""
    decision = await admission.admit_generic(
        identifier,
        limit=settings.UPLOAD_VALIDATION_RATE_LIMIT,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        scope="upload-validation"
    )
    decision.raise_for_rejection(now=services.clock.now())

    payload = request.base64_data
    parsed = parse_data_url(payload)
    if parsed is not None:
        declared_mime, payload = parsed
        if declared_mime and declared_mime != request.mime_type.lower():
            _reject(ValidationErrorKind.INVALID_MIME_TYPE, "Data URL type does not match mimeType.")

    result = services.validator.validate_parts(request.mime_type, payload, request.filename)
    if not result.valid:
        _reject(result.error, result.message)

    # The declared size has to respect the cap as well as the decoded one
    if request.size > services.validator.max_size_bytes:
        _reject(ValidationErrorKind.FILE_TOO_LARGE, f"File is too large. Maximum is {services.validator.max_size_bytes} bytes.")

    logger.debug("upload_validated", filename=request.filename, size=result.size)
    return {"valid": True, "mimeType": result.mime_type, "size": result.size}


def _reject(kind: ValidationErrorKind, message: Optional[str]):
    record_validation_rejection(kind.value)
    logger.warning("upload_rejected", code=kind.value, reason=message)
    raise ImageValidationError(message or "Invalid file", code=kind.value)
