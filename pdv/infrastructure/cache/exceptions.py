"""
Cache Infrastructure Exceptions

Backend-level exceptions for the key-value store layer. Stores raise these;
the cache service catches them and degrades to a miss or a no-op.
"""

from typing import Optional, Any, Dict


class CacheBackendException(Exception):
    """Base exception for key-value store errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class CacheConnectionException(CacheBackendException):
    """Raised when the backend cannot be reached or the connection is lost."""

    def __init__(
        self,
        message: str = "Cache backend connection failed",
        backend: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if backend:
            details["backend"] = backend
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message, error_code="CACHE_CONNECTION_ERROR", details=details
        )
        if original_error:
            self.__cause__ = original_error


class CacheOperationTimeoutException(CacheBackendException):
    """Raised when a backend command exceeds its timeout."""

    def __init__(
        self, operation: str, timeout_seconds: float, key: Optional[str] = None
    ):
        details = {"operation": operation, "timeout_seconds": timeout_seconds}
        if key:
            details["key"] = key

        super().__init__(
            message=f"Cache operation '{operation}' timed out after {timeout_seconds}s",
            error_code="CACHE_TIMEOUT_ERROR",
            details=details,
        )


class CacheSerializationException(CacheBackendException):
    """Raised when a value cannot be encoded to, or decoded from, JSON."""

    def __init__(
        self,
        key: str,
        operation: str,
        original_error: Optional[Exception] = None,
    ):
        details = {"key": key, "operation": operation}
        if original_error:
            details["original_error"] = str(original_error)

        super().__init__(
            message=f"Failed to {operation} cached value for key '{key}'",
            error_code="CACHE_SERIALIZATION_ERROR",
            details=details,
        )
        if original_error:
            self.__cause__ = original_error


class CacheCircuitBreakerOpenException(CacheBackendException):
    """Raised when the primary backend's circuit breaker is open."""

    def __init__(
        self,
        message: str = "Cache circuit breaker is open - primary backend unavailable",
    ):
        super().__init__(message=message, error_code="CACHE_CIRCUIT_BREAKER_OPEN")
