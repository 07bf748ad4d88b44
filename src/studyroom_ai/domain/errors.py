"""
Custom exception hierarchy for the AI chat service.

This module defines the exception hierarchy with:
- Consistent error codes for API responses
- HTTP status code mappings for FastAPI
- Detailed error messages for debugging

Exception Categories:
- 4xx Client Errors: BadRequestError, UnauthorizedError
- Pipeline Errors: SchemaLoadError, ProviderError, UnsafeStatementError,
  ExecutionError, CorrectionExhausted
- 5xx Infrastructure Errors: DatabaseError, ConfigurationError, ServiceUnavailableError

The pipeline entry point (AIChatService.answer) converts every pipeline error
into a failed answer; only the auxiliary endpoints let these reach the
FastAPI exception handlers.

Usage:
    raise SchemaLoadError("Unable to load database schema")
    raise UnsafeStatementError("Mutating keyword found", details={"keyword": "drop"})
"""

from typing import Any, Dict, Optional


class AIChatException(Exception):
    """
    Base exception for all AI chat errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error code (e.g., "SCHEMA_LOAD_ERROR")
        http_status: HTTP status code to return (default: 500)
        details: Optional dictionary with additional error context
    """

    error_code: str = "INTERNAL_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        http_status: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        if http_status:
            self.http_status = http_status

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Client Errors (4xx)
# =============================================================================


class BadRequestError(AIChatException):
    """
    Raised when the request is malformed or invalid.

    HTTP Status: 400 Bad Request

    Examples:
        - Unsupported AI mode in a mode switch
        - Unknown provider or backend name
    """

    error_code = "BAD_REQUEST"
    http_status = 400


class UnauthorizedError(AIChatException):
    """
    Raised when no authenticated user id accompanies the request.

    HTTP Status: 401 Unauthorized
    """

    error_code = "UNAUTHORIZED"
    http_status = 401


# =============================================================================
# Configuration Errors (5xx)
# =============================================================================


class ConfigurationError(AIChatException):
    """
    Raised when configuration is invalid or missing.

    HTTP Status: 500 Internal Server Error

    Examples:
        - Hosted provider selected without an API key
    """

    error_code = "CONFIGURATION_ERROR"
    http_status = 500


# =============================================================================
# Database Errors (5xx)
# =============================================================================


class DatabaseError(AIChatException):
    """
    Base class for database-related errors.

    HTTP Status: 503 Service Unavailable
    """

    error_code = "DATABASE_ERROR"
    http_status = 503


class DatabaseConnectionError(DatabaseError):
    """
    Raised when the database cannot be reached.

    HTTP Status: 503 Service Unavailable

    Examples:
        - Connection timeout
        - Authentication failure
        - Pool not initialized
    """

    error_code = "DATABASE_CONNECTION_ERROR"
    http_status = 503


class DatabaseQueryError(DatabaseError):
    """
    Raised when statement execution fails.

    HTTP Status: 500 Internal Server Error

    Examples:
        - SQL syntax error
        - Table/column not found
        - Statement timeout
    """

    error_code = "DATABASE_QUERY_ERROR"
    http_status = 500


# =============================================================================
# Pipeline Errors
# =============================================================================


class SchemaLoadError(AIChatException):
    """
    Raised when table/column/foreign-key metadata cannot be read.

    Fatal to the request; never replaced by a stale or empty snapshot.

    HTTP Status: 503 Service Unavailable
    """

    error_code = "SCHEMA_LOAD_ERROR"
    http_status = 503


class ProviderError(AIChatException):
    """
    Raised when a text generation backend fails.

    Triggers the fallback chain; not shown to the user.

    HTTP Status: 503 Service Unavailable

    Examples:
        - Network error or timeout
        - Missing or rejected API key
        - Empty completion
    """

    error_code = "PROVIDER_ERROR"
    http_status = 503


class RateLimitError(ProviderError):
    """
    Raised when a hosted provider reports quota exhaustion (HTTP 429).

    HTTP Status: 429 Too Many Requests
    """

    error_code = "RATE_LIMIT_EXCEEDED"
    http_status = 429


class ProviderAuthError(ProviderError):
    """
    Raised when a hosted provider rejects the API key (HTTP 401/403).

    HTTP Status: 503 Service Unavailable
    """

    error_code = "PROVIDER_AUTH_ERROR"


class UnsafeStatementError(AIChatException):
    """
    Raised when generated text is not a single read-only SELECT.

    The text is never executed and never rewritten into a safer form.

    HTTP Status: 422 Unprocessable Entity
    """

    error_code = "UNSAFE_STATEMENT"
    http_status = 422


class ExecutionError(AIChatException):
    """
    Raised when a statement fails in a way the correction loop cannot fix.

    HTTP Status: 500 Internal Server Error
    """

    error_code = "EXECUTION_ERROR"
    http_status = 500


class CorrectionExhausted(ExecutionError):
    """
    Raised when the retry budget is spent before a statement succeeds.

    Carries the last execution error and the last statement attempted.

    HTTP Status: 500 Internal Server Error
    """

    error_code = "CORRECTION_EXHAUSTED"
    http_status = 500


# =============================================================================
# Service Unavailable (5xx)
# =============================================================================


class ServiceUnavailableError(AIChatException):
    """
    Raised when a required service is not available.

    HTTP Status: 503 Service Unavailable

    Examples:
        - Chat service not initialized at startup
    """

    error_code = "SERVICE_UNAVAILABLE"
    http_status = 503
