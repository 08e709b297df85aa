# =============================================================================
# success_core/errors/exceptions.py
# Custom Exception Hierarchy for the sync core
# =============================================================================

from typing import Optional, Dict, Any


class SuccessCoreError(Exception):
    """
    Base exception for all sync-core errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "SYNC_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "SC_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# NETWORK / SYNC EXCEPTIONS
# =============================================================================

class NetworkError(SuccessCoreError):
    """Raised when a fetch fails or the device is offline"""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status: Optional[int] = None,
        code: str = "SYNC_001",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if url:
            details["url"] = url
        if status is not None:
            details["status"] = status

        super().__init__(
            message=message,
            code=code,
            details=details,
            **kwargs,
        )


class SyncTimeoutError(NetworkError):
    """Raised when an explicit timeout fires; retried like a network failure"""

    def __init__(
        self,
        message: str = "Operation timed out",
        timeout: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout is not None:
            details["timeout"] = timeout

        super().__init__(
            message=message,
            code="SYNC_002",
            details=details,
            **kwargs,
        )


class OperationCancelledError(SuccessCoreError):
    """Raised when a consumer observes an aborted signal"""

    def __init__(self, message: str = "Operation aborted", reason: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if reason:
            details["reason"] = reason

        super().__init__(
            message=message,
            code="SYNC_003",
            details=details,
            **kwargs,
        )


class ReconciliationError(SuccessCoreError):
    """Raised for a malformed change event (e.g. missing id)"""

    def __init__(self, message: str, kind: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if kind:
            details["kind"] = kind

        super().__init__(
            message=message,
            code="SYNC_004",
            details=details,
            **kwargs,
        )


# =============================================================================
# CACHE EXCEPTIONS
# =============================================================================

class CacheCorruptionError(SuccessCoreError):
    """Raised when a stored cache payload cannot be parsed"""

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if key:
            details["key"] = key

        super().__init__(
            message=message,
            code="CACHE_001",
            details=details,
            **kwargs,
        )


class CacheInstallError(SuccessCoreError):
    """Raised when precaching a cache version fails"""

    def __init__(
        self,
        message: str,
        version: Optional[str] = None,
        failed_urls: Optional[list] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if version:
            details["version"] = version
        if failed_urls:
            details["failed_urls"] = failed_urls

        super().__init__(
            message=message,
            code="CACHE_002",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(SuccessCoreError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
