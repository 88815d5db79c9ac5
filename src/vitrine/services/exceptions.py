"""Service error hierarchy.

Two families live here:
- AdmissionError: synchronous rejections returned to the caller before any work is queued
- ServiceError: failures during pipeline processing, split into
  TransientError (retryable) and PermanentError (non-retryable)

Every error carries a stable string code used in API responses, job rows and DLQ records.
"""

from typing import Any, Optional

# Codes that never succeed on retry, whatever exception carries them
NON_RETRYABLE_ERROR_CODES = frozenset(
    {
        "BAD_REQUEST",
        "VALIDATION_FAILED",
        "NSFW_DETECTED",
        "BAD_IMAGE",
        "INVALID_INPUT",
        "UNAUTHORIZED",
        "FORBIDDEN",
    }
)


class AdmissionError(Exception):
    """Base exception for admission rejections."""

    code = "BAD_REQUEST"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ForbiddenError(AdmissionError):
    """Account is banned, in cooldown or being deleted."""

    code = "FORBIDDEN"


class InsufficientCreditsError(AdmissionError):
    """Balance after the debit would be negative."""

    code = "INSUFFICIENT_CREDITS"


class RejectedContentError(AdmissionError):
    """Image payload tripped the NSFW pre-check. A violation has been recorded."""

    code = "REJECTED_CONTENT"


class RequestValidationError(AdmissionError):
    """Malformed admission request."""

    code = "VALIDATION_FAILED"


class ServiceError(Exception):
    """Base exception for all processing errors."""

    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        if error_code is not None:
            self.error_code = error_code


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (503)
    """

    error_code = "TRANSIENT_ERROR"


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Undecodable input images
    """

    error_code = "PERMANENT_ERROR"


class NonRetryableError(PermanentError):
    """Pipeline failure that must go straight to the dead-letter path."""

    error_code = "VALIDATION_FAILED"


class StorageError(TransientError):
    """Object storage read or write failed."""

    error_code = "STORAGE_ERROR"


class UploadError(TransientError):
    """No export format could be uploaded."""

    error_code = "UPLOAD_FAILED"


class ModelUnavailableError(ServiceError):
    """Neither the primary nor the fallback model produced an image.

    Always a soft-degrade signal: the caller substitutes a placeholder image.
    """

    error_code = "MODEL_UNAVAILABLE"


class JobCancelledError(ServiceError):
    """Job was cancelled by an operator while it was being processed."""

    error_code = "CANCELLED"


def error_code_for(exc: BaseException) -> str:
    """Stable code for any exception raised inside the pipeline."""
    if isinstance(exc, ServiceError):
        return exc.error_code
    return "INTERNAL_ERROR"


def is_retryable(exc: BaseException) -> bool:
    """Decide retry vs terminal for a pipeline failure.

    Permanent errors and anything carrying a non-retryable code are terminal.
    Unknown exceptions are retried: the attempt cap bounds them.
    """
    if isinstance(exc, PermanentError):
        return False
    return error_code_for(exc) not in NON_RETRYABLE_ERROR_CODES
