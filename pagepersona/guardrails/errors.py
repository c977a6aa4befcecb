import logging
from enum import Enum

from fastapi import HTTPException

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    INVALID_URL = "INVALID_URL"
    INVALID_INPUT = "INVALID_INPUT"
    PERSONA_NOT_FOUND = "PERSONA_NOT_FOUND"
    SCRAPING_FAILED = "SCRAPING_FAILED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    TRANSFORMATION_FAILED = "TRANSFORMATION_FAILED"


_STATUS_BY_CODE = {
    ErrorCode.INVALID_URL: 400,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.PERSONA_NOT_FOUND: 400,
    ErrorCode.SCRAPING_FAILED: 502,
    ErrorCode.SERVICE_UNAVAILABLE: 503,
    ErrorCode.TRANSFORMATION_FAILED: 500,
}


class TransformError(Exception):
    """A user-facing pipeline failure with a stable error code and HTTP status.
    Why available: Lets the fetcher, cleaner and model call fail with a message the API can return as-is."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def status_code(self) -> int:
        return _STATUS_BY_CODE.get(self.code, 500)


def as_http_500(e: Exception) -> HTTPException:
    """Log exception and return a generic 500 HTTPException (no internal details leaked).
    Why available: Centralized error handling so API never leaks stack traces or internal state to clients."""
    logger.error("unhandled_error", exc_info=e)
    return HTTPException(status_code=500, detail="Internal server error")
