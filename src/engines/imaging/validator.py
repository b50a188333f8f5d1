"""
Image Integrity Validator

Checks an uploaded image before any inference money is spent on it:

1. Data URL wrapper present       -> INVALID_DATA_FORMAT
2. MIME type present / allowed    -> UNKNOWN_MIME_TYPE / INVALID_MIME_TYPE
3. Filename extension matches     -> EXTENSION_MISMATCH
4. Decoded size within the cap    -> FILE_TOO_LARGE
5. Magic number matches the MIME  -> INVALID_FILE_SIGNATURE

Checks run in that order and stop at the first failure. Validation is pure:
no I/O, no state, the same input always gives the same result.
"""

import base64
import binascii
import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from src.core.exceptions import ImageValidationError


class ValidationErrorKind(str, Enum):
    """Rejection reasons, valued by their API error code."""
    INVALID_DATA_FORMAT = "INVALID_DATA_FORMAT"
    UNKNOWN_MIME_TYPE = "UNKNOWN_MIME_TYPE"
    INVALID_MIME_TYPE = "INVALID_MIME_TYPE"
    EXTENSION_MISMATCH = "EXTENSION_MISMATCH"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    INVALID_FILE_SIGNATURE = "INVALID_FILE_SIGNATURE"


ALLOWED_MIME_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp")

EXTENSION_MIME_TYPES: Dict[str, Tuple[str, ...]] = {
    ".jpg": ("image/jpeg", "image/jpg"),
    ".jpeg": ("image/jpeg", "image/jpg"),
    ".png": ("image/png",),
    ".webp": ("image/webp",),
}

# Leading bytes per MIME type
MAGIC_NUMBERS: Dict[str, bytes] = {
    "image/jpeg": b"\xff\xd8\xff",
    "image/jpg": b"\xff\xd8\xff",
    "image/png": b"\x89PNG",
    "image/webp": b"RIFF",
}

# RIFF is shared by WAV/AVI, WEBP carries its own tag at offset 8
WEBP_FORM_TYPE = b"WEBP"

_DATA_URL = re.compile(r"^data:(?P<mime>[^;,]*);base64,(?P<payload>.*)$", re.DOTALL)


@dataclass(frozen=True)
class ImageBlob:
    """An uploaded image as a base64 data URL plus its optional filename."""
    data_url: str
    filename: Optional[str] = None


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: Optional[ValidationErrorKind] = None
    message: Optional[str] = None
    mime_type: Optional[str] = None
    data: Optional[bytes] = None

    @property
    def size(self) -> int:
        return len(self.data) if self.data is not None else 0

    @classmethod
    def ok(cls, mime_type: str, data: bytes) -> "ValidationResult":
        return cls(valid=True, mime_type=mime_type, data=data)

    @classmethod
    def fail(cls, error: ValidationErrorKind, message: str, mime_type: Optional[str] = None) -> "ValidationResult":
        return cls(valid=False, error=error, message=message, mime_type=mime_type)

    def raise_for_error(self):
        if not self.valid:
            raise ImageValidationError(self.message or "Invalid image", code=self.error.value)


def parse_data_url(data_url: str) -> Optional[Tuple[str, str]]:
    """Split `data:<mime>;base64,<payload>` into (mime, payload), None if malformed."""
    if not isinstance(data_url, str):
        return None
    match = _DATA_URL.match(data_url.strip())
    if not match:
        return None
    return match.group("mime").strip().lower(), match.group("payload")


def encode_data_url(mime_type: str, data: bytes) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def _decode_base64(payload: str) -> Optional[bytes]:
    try:
        return base64.b64decode(payload.strip(), validate=True)
    except (binascii.Error, ValueError):
        return None


def signature_matches(mime_type: str, data: bytes) -> bool:
    """True when the leading bytes carry the magic number implied by mime_type."""
    magic = MAGIC_NUMBERS.get(mime_type)
    if magic is None or not data.startswith(magic):
        return False
    if mime_type == "image/webp" and len(data) >= 12:
        return data[8:12] == WEBP_FORM_TYPE
    return True


class ImageIntegrityValidator:
    """Validates images against the allow-list, size cap and file signatures."""

    def __init__(self, max_size_bytes: int, allowed_mime_types: Tuple[str, ...] = ALLOWED_MIME_TYPES):
        self.max_size_bytes = max_size_bytes
        self.allowed_mime_types = allowed_mime_types

    def validate(self, blob: ImageBlob) -> ValidationResult:
        parsed = parse_data_url(blob.data_url)
        if parsed is None:
            return ValidationResult.fail(
                ValidationErrorKind.INVALID_DATA_FORMAT,
                "Invalid image data format. Expected a base64 data URL."
            )
        mime_type, payload = parsed
        return self.validate_parts(mime_type, payload, blob.filename)

    def validate_parts(
        self,
        mime_type: Optional[str],
        payload: str,
        filename: Optional[str] = None
    ) -> ValidationResult:
        """Run checks 2-5 on an already separated MIME type and base64 payload."""
        if not mime_type:
            return ValidationResult.fail(
                ValidationErrorKind.UNKNOWN_MIME_TYPE,
                "Could not determine image type."
            )
        mime_type = mime_type.lower()
        if mime_type not in self.allowed_mime_types:
            return ValidationResult.fail(
                ValidationErrorKind.INVALID_MIME_TYPE,
                f"Unsupported image type: {mime_type}. Allowed: JPEG, PNG, WEBP.",
                mime_type=mime_type
            )

        if filename is not None:
            extension = os.path.splitext(filename)[1].lower()
            if mime_type not in EXTENSION_MIME_TYPES.get(extension, ()):
                return ValidationResult.fail(
                    ValidationErrorKind.EXTENSION_MISMATCH,
                    f"File extension '{extension or '(none)'}' does not match type {mime_type}.",
                    mime_type=mime_type
                )

        data = _decode_base64(payload)
        if data is None:
            return ValidationResult.fail(
                ValidationErrorKind.INVALID_DATA_FORMAT,
                "Image payload is not valid base64.",
                mime_type=mime_type
            )

        if len(data) > self.max_size_bytes:
            return ValidationResult.fail(
                ValidationErrorKind.FILE_TOO_LARGE,
                f"Image is {len(data)} bytes, maximum is {self.max_size_bytes} bytes.",
                mime_type=mime_type
            )

        if not signature_matches(mime_type, data):
            return ValidationResult.fail(
                ValidationErrorKind.INVALID_FILE_SIGNATURE,
                "File content does not match its declared image type.",
                mime_type=mime_type
            )

        return ValidationResult.ok(mime_type, data)

    def validate_many(self, blobs: List[ImageBlob]) -> List[ValidationResult]:
        return [self.validate(blob) for blob in blobs]
