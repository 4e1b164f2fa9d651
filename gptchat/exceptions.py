"""
Exception hierarchy for gpt-chat.

This module defines the exceptions raised by the completion client, the
conversation state and the configuration layer. Every exception carries an
error code, structured details and an optional underlying cause.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes for categorizing exceptions."""

    UNKNOWN = "UNKNOWN"
    CONFIGURATION = "CONFIGURATION"
    CONNECTION = "CONNECTION"
    API = "API"
    VALIDATION = "VALIDATION"
    IO = "IO"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"


class GptChatError(Exception):
    """
    Base exception class for all gpt-chat errors.

    Parameters
    ----------
    message : str
        Human-readable error message.
    error_code : ErrorCode, default=ErrorCode.UNKNOWN
        Categorization code for the error.
    details : dict[str, Any] | None, optional
        Additional context about the error.
    cause : Exception | None, optional
        The underlying exception that caused this error.

    Examples
    --------
    >>> raise GptChatError("Something went wrong", ErrorCode.UNKNOWN)
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message: str = message
        self.error_code: ErrorCode = error_code
        self.details: dict[str, Any] = details or {}
        self.cause: Exception | None = cause

    def __str__(self) -> str:
        parts: list[str] = [f"[{self.error_code.value}] {self.message}"]
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"Details: {detail_str}")
        if self.cause:
            parts.append(f"Caused by: {type(self.cause).__name__}: {self.cause}")
        return " | ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code.value!r}, "
            f"details={self.details!r}, "
            f"cause={self.cause!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize the error to a dictionary.

        Returns
        -------
        dict[str, Any]
            Dictionary representation of the error with all context.
        """
        result: dict[str, Any] = {
            "type": self.__class__.__name__,
            "error_code": self.error_code.value,
            "message": self.message,
            "details": self.details,
        }
        if self.cause:
            result["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause),
            }
        return result


class ConfigurationError(GptChatError):
    """
    Exception raised for configuration-related errors.

    Parameters
    ----------
    message : str
        Human-readable error message.
    config_key : str | None, optional
        The configuration key that caused the error.
    config_file : str | None, optional
        The configuration file path where the error occurred.
    details : dict[str, Any] | None, optional
        Additional context about the error.
    cause : Exception | None, optional
        The underlying exception that caused this error.

    Examples
    --------
    >>> raise ConfigurationError(
    ...     "Invalid retry settings",
    ...     config_key="retry",
    ...     config_file="config.toml"
    ... )
    """

    def __init__(
        self,
        message: str,
        config_key: str | None = None,
        config_file: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if config_key:
            details["config_key"] = config_key
        if config_file:
            details["config_file"] = config_file
        super().__init__(
            message,
            error_code=ErrorCode.CONFIGURATION,
            details=details,
            cause=cause,
        )
        self.config_key: str | None = config_key
        self.config_file: str | None = config_file


class ConnectionError(GptChatError):
    """
    Exception raised when no response could be obtained from the API.

    Raised after transport-level failures have exhausted the retry policy,
    when a stream breaks after it was opened, or when the client has no
    credential to connect with.

    Parameters
    ----------
    message : str
        Human-readable error message.
    endpoint : str | None, optional
        The endpoint that failed to connect.
    details : dict[str, Any] | None, optional
        Additional context about the error.
    cause : Exception | None, optional
        The underlying exception that caused this error.
    """

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if endpoint:
            details["endpoint"] = endpoint
        super().__init__(
            message,
            error_code=ErrorCode.CONNECTION,
            details=details,
            cause=cause,
        )
        self.endpoint: str | None = endpoint


class RequestTimeoutError(GptChatError):
    """
    Exception raised when a request is aborted by the client-side timeout.

    Timeouts are never retried: the server may already have acted on the
    request.
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            message,
            error_code=ErrorCode.TIMEOUT,
            details=details,
            cause=cause,
        )


class APIError(GptChatError):
    """
    Exception raised when the API answers with a non-success status.

    Parameters
    ----------
    message : str
        Human-readable error message.
    status_code : int | None, optional
        HTTP status code of the response.
    body : str, default=""
        Raw response body.
    details : dict[str, Any] | None, optional
        Additional context about the error.
    cause : Exception | None, optional
        The underlying exception that caused this error.

    Examples
    --------
    >>> error = APIError("Bad gateway", status_code=502, body="upstream down")
    >>> error.is_retryable
    True
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str = "",
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
        error_code: ErrorCode = ErrorCode.API,
    ) -> None:
        details = details or {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(
            message,
            error_code=error_code,
            details=details,
            cause=cause,
        )
        self.status_code: int | None = status_code
        self.body: str = body

    @property
    def is_retryable(self) -> bool:
        """Whether the status is transient: rate limiting or a server error."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or 500 <= self.status_code < 600


class RateLimitError(APIError):
    """
    Exception raised when the API answers 429 Too Many Requests.

    Parameters
    ----------
    message : str
        Human-readable error message.
    body : str, default=""
        Raw response body.
    retry_after : float | None, optional
        Server-suggested wait in seconds, from the ``Retry-After`` header.
    details : dict[str, Any] | None, optional
        Additional context about the error.
    cause : Exception | None, optional
        The underlying exception that caused this error.
    """

    def __init__(
        self,
        message: str,
        body: str = "",
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if retry_after is not None:
            details["retry_after"] = retry_after
        super().__init__(
            message,
            status_code=429,
            body=body,
            details=details,
            cause=cause,
            error_code=ErrorCode.RATE_LIMIT,
        )
        self.retry_after: float | None = retry_after


class ValidationError(GptChatError):
    """
    Exception raised for invalid input values or malformed payloads.

    Parameters
    ----------
    message : str
        Human-readable error message.
    field : str | None, optional
        The field that failed validation.
    details : dict[str, Any] | None, optional
        Additional context about the error.
    cause : Exception | None, optional
        The underlying exception that caused this error.

    Examples
    --------
    >>> raise ValidationError("At least one message is required", field="messages")
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(
            message,
            error_code=ErrorCode.VALIDATION,
            details=details,
            cause=cause,
        )
        self.field: str | None = field


class PersistenceError(GptChatError):
    """Exception raised when a persona file cannot be read or written."""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if path:
            details["path"] = path
        super().__init__(
            message,
            error_code=ErrorCode.IO,
            details=details,
            cause=cause,
        )
        self.path: str | None = path
