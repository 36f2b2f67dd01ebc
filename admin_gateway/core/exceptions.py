"""Exceptions raised by the request pipeline"""

from typing import Optional, Dict, Any


class PipelineException(Exception):
    """Base exception for pipeline rejections"""

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}
        self.headers = headers or {}
        super().__init__(self.message)


class RateLimitExceeded(PipelineException):
    """Raised when a client exhausts the budget of its rate limit category"""

    status_code = 429
    default_code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        retry_after: Optional[str] = None,
        retry_after_seconds: int = 0,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.retry_after = retry_after
        self.retry_after_seconds = retry_after_seconds
        details = {"retryAfterSeconds": retry_after_seconds}
        if retry_after:
            details["retryAfter"] = retry_after
        super().__init__(message, error_code, details, headers)


class IntegrityError(PipelineException):
    """Raised when a request fails an integrity check; never retried automatically"""

    status_code = 403
    default_code = "FORBIDDEN"


class CSRFTokenMissing(IntegrityError):
    default_code = "CSRF_TOKEN_MISSING"

    def __init__(self, message: str = "CSRF token is required"):
        super().__init__(message)


class CSRFTokenInvalid(IntegrityError):
    default_code = "CSRF_TOKEN_INVALID"

    def __init__(self, message: str = "Invalid CSRF token"):
        super().__init__(message)


class IPNotAllowed(IntegrityError):
    default_code = "IP_NOT_ALLOWED"

    def __init__(self, message: str = "Your IP address is not allowed to access this resource"):
        super().__init__(message)
