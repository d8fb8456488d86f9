"""
Exception classes for the Tessera framework.

Handlers and middleware raise these; the dispatcher is the only place that
turns them into HTTP responses.

Exception hierarchy:
    AppException (base)
    ├── BadRequestError (400)
    ├── Unauthorized (401)
    │   └── InvalidCredentialsError
    ├── Forbidden (403)
    ├── NotFoundError (404)
    ├── ValidationFailure (422)
    ├── RateLimited (429)
    └── StorageConstraintError (500)

    ConfigurationError      (startup only, never rendered per request)
    InvalidIdentifierError  (ValueError, programmer error)
"""

from typing import Any


class AppException(Exception):
    """
    Base exception class for all failures that map to an HTTP status.

    Attributes:
        status_code: HTTP status code for the error
        error_code: Machine-readable error code
        message: Human-readable error message, safe to show to clients
        details: Optional additional error details (logged, not rendered)
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to the failure envelope.

        Returns:
            Dictionary with ``success`` and ``message`` keys
        """
        return {"success": False, "message": self.message}


class BadRequestError(AppException):
    """Raised when a request is well-formed but cannot be honoured."""

    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, status_code=400, error_code="BAD_REQUEST", details=details)


# =============================================================================
# Authentication Errors (401 Unauthorized)
# =============================================================================


class Unauthorized(AppException):
    """Raised for missing, invalid or expired credentials."""

    def __init__(
        self,
        message: str = "Unauthorized",
        error_code: str = "UNAUTHORIZED",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message=message, status_code=401, error_code=error_code, details=details)


class InvalidCredentialsError(Unauthorized):
    """
    Raised when login credentials are invalid.

    The message never says which of email or password was wrong.
    """

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message=message, error_code="INVALID_CREDENTIALS")


# =============================================================================
# Authorization Errors (403 Forbidden)
# =============================================================================


class Forbidden(AppException):
    """Raised when an authenticated principal may not perform an action."""

    def __init__(self, message: str = "Access forbidden", details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, status_code=403, error_code="FORBIDDEN", details=details)


# =============================================================================
# Resource Errors
# =============================================================================


class NotFoundError(AppException):
    """Raised when a requested resource or route is not found."""

    def __init__(
        self,
        resource: str = "Resource",
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        if message is None:
            message = f"{resource} not found"
        super().__init__(message=message, status_code=404, error_code="NOT_FOUND", details=details)


# =============================================================================
# Validation Errors (422 Unprocessable Entity)
# =============================================================================


class ValidationFailure(AppException):
    """
    Raised when input fails validation.

    Attributes:
        errors: Mapping of field name to the list of failure messages
    """

    def __init__(
        self,
        errors: dict[str, list[str]] | None = None,
        message: str = "Validation failed",
    ) -> None:
        super().__init__(message=message, status_code=422, error_code="VALIDATION_ERROR")
        self.errors = errors or {}

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        if self.errors:
            body["errors"] = self.errors
        return body


# =============================================================================
# Rate Limiting Error (429 Too Many Requests)
# =============================================================================


class RateLimited(AppException):
    """Raised when a client exceeds its request budget."""

    def __init__(
        self,
        message: str = "Too many requests. Please try again later.",
        retry_after: int | None = None,
    ) -> None:
        details = {"retry_after": retry_after} if retry_after else {}
        super().__init__(
            message=message,
            status_code=429,
            error_code="RATE_LIMIT_EXCEEDED",
            details=details,
        )
        self.retry_after = retry_after


# =============================================================================
# Storage Errors (500 Internal Server Error)
# =============================================================================


class StorageConstraintError(AppException):
    """
    Raised when a write violates a database constraint.

    The statement and parameters are kept in ``details`` for logging only;
    the client sees a sanitized message.
    """

    def __init__(
        self,
        message: str = "The record could not be saved",
        statement: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="STORAGE_CONSTRAINT",
            details={"statement": statement, "params": params or {}},
        )


# =============================================================================
# Non-HTTP Errors
# =============================================================================


class ConfigurationError(Exception):
    """Raised at startup when configuration is missing or inconsistent."""


class InvalidIdentifierError(ValueError):
    """Raised when a column or condition name fails the identifier allow-list."""
