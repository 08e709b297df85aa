# =============================================================================
# success_core/errors/__init__.py
# Centralized Error Handling for the sync core
# =============================================================================

from .exceptions import (
    SuccessCoreError,
    NetworkError,
    SyncTimeoutError,
    OperationCancelledError,
    ReconciliationError,
    CacheCorruptionError,
    CacheInstallError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    safe_execute,
    ErrorContext,
    error_boundary,
)

__all__ = [
    # Exceptions
    "SuccessCoreError",
    "NetworkError",
    "SyncTimeoutError",
    "OperationCancelledError",
    "ReconciliationError",
    "CacheCorruptionError",
    "CacheInstallError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "safe_execute",
    "ErrorContext",
    "error_boundary",
]
