"""
Global Exception Handling

Provides the exception hierarchy and the handlers that turn it into the
structured `{"error": {"message", "code", "statusCode"}}` envelope.
"""

import math
import time
import traceback
from typing import Optional, Dict, Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.core.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class ZoneGuardError(Exception):
    """Base exception for the service."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_SERVER_ERROR",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_response_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "statusCode": self.status_code,
            }
        }

    def response_headers(self) -> Dict[str, str]:
        return {}


class ImageValidationError(ZoneGuardError):
    """Raised when an uploaded image fails integrity validation."""

    def __init__(self, message: str, code: str, **kwargs):
        super().__init__(message, code=code, status_code=400, **kwargs)


class RequestValidationFailed(ZoneGuardError):
    """Raised when the request body is structurally wrong."""

    def __init__(self, message: str = "Invalid request data", **kwargs):
        super().__init__(message, code="VALIDATION_ERROR", status_code=400, **kwargs)


class ImageCompressionError(ZoneGuardError):
    """Raised when an image cannot be decoded for re-encoding."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="COMPRESSION_FAILED", status_code=400, **kwargs)


class RateLimitExceededError(ZoneGuardError):
    """Raised when a caller exceeded its admission quota."""

    def __init__(
        self,
        limit: int,
        remaining: int,
        reset_at: float,
        message: str = "Too many requests. Please wait before trying again.",
        now: Optional[float] = None,
        **kwargs
    ):
        super().__init__(message, code="RATE_LIMIT_EXCEEDED", status_code=429, **kwargs)
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at
        self.now = now

    @property
    def retry_after_seconds(self) -> int:
        now = self.now if self.now is not None else time.time()
        return max(1, math.ceil(self.reset_at - now))

    def response_headers(self) -> Dict[str, str]:
        return {
            "Retry-After": str(self.retry_after_seconds),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at * 1000)),
        }


class ExternalAPIError(ZoneGuardError):
    """Raised when the external inference API call fails."""

    def __init__(
        self,
        message: str,
        service: str,
        http_status: Optional[int] = None,
        code: str = "AI_SERVICE_ERROR",
        **kwargs
    ):
        super().__init__(message, code=code, status_code=503, **kwargs)
        self.service = service
        self.http_status = http_status
        self.details["service"] = service
        self.details["http_status"] = http_status


class InferenceTimeoutError(ExternalAPIError):
    """Raised when the inference call timed out."""


class InferenceAuthError(ExternalAPIError):
    """Raised when the inference API rejected our credentials."""

    def __init__(self, message: str, service: str, **kwargs):
        super().__init__(message, service=service, http_status=401, code="AI_AUTH_ERROR", **kwargs)


class InferenceResponseError(ExternalAPIError):
    """Raised when the model reply cannot be parsed into the expected shape."""


class ServiceNotConfiguredError(ZoneGuardError):
    """Raised when the inference API key is missing."""

    def __init__(self, message: str = "AI service not configured. Please contact support.", **kwargs):
        super().__init__(message, code="SERVICE_NOT_CONFIGURED", status_code=503, **kwargs)


class FoodNotFoundError(ZoneGuardError):
    """Raised when a food record does not exist."""

    def __init__(self, food_id: str, **kwargs):
        super().__init__(f"Food not found: {food_id}", code="FOOD_NOT_FOUND", status_code=404, **kwargs)
        self.details["food_id"] = food_id


# =============================================================================
# Exception Handlers
# =============================================================================

def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(ZoneGuardError)
    async def zoneguard_exception_handler(request: Request, exc: ZoneGuardError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "request_failed",
            error=exc.message,
            code=exc.code,
            status_code=exc.status_code,
            path=str(request.url.path),
            details=exc.details
        )

        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response_dict(),
            headers=exc.response_headers()
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.warning(
            "request_body_invalid",
            path=str(request.url.path),
            errors=exc.errors()
        )
        return JSONResponse(
            status_code=400,
            content=RequestValidationFailed().to_response_dict()
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "message": "An unexpected error occurred",
                    "code": "INTERNAL_SERVER_ERROR",
                    "statusCode": 500,
                }
            }
        )
