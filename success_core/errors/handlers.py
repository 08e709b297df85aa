# =============================================================================
# success_core/errors/handlers.py
# Error Handling Utilities for the sync core
# =============================================================================

from __future__ import annotations
import functools
import traceback
from typing import Optional, Callable, TypeVar, Any

from success_core.logging import get_logger
from success_core.notifications import Notifier, NotificationLevel
from .exceptions import SuccessCoreError

logger = get_logger(__name__)

T = TypeVar("T")


def handle_error(
    error: Exception,
    notifier: Optional[Notifier] = None,
    log_error: bool = True,
    user_message: Optional[str] = None,
    title: str = "Error",
) -> None:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        notifier: Where to surface the error to the user (skipped if None)
        log_error: Whether to log the error
        user_message: Custom message to show user (uses error message if None)
        title: Notification title
    """
    if isinstance(error, SuccessCoreError):
        message = user_message or error.message
        code = error.code
        details = error.details
        recoverable = error.recoverable
    else:
        message = user_message or str(error)
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}
        recoverable = True

    if log_error:
        logger.error(
            f"[{code}] {message}",
            extra={"details": details},
            exc_info=error,
        )

    if notifier is not None:
        if recoverable:
            notifier.notify(title, message, NotificationLevel.ERROR)
        else:
            notifier.notify(
                f"Critical {title.lower()}",
                f"{message}. Please contact support.",
                NotificationLevel.ERROR,
            )


def safe_execute(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    error_message: Optional[str] = None,
    notifier: Optional[Notifier] = None,
    reraise: bool = False,
    **kwargs,
) -> Optional[T]:
    """
    Execute a function with automatic error handling.

    Usage:
        counts = safe_execute(
            count_by_status, clients,
            default={},
            error_message="Failed to compute client counts"
        )
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, notifier=notifier, user_message=error_message)
        if reraise:
            raise
        return default


class ErrorContext:
    """
    Context manager for error handling with automatic logging and user feedback.

    Usage:
        with ErrorContext("Replaying offline changes", notifier=notifier):
            await engine.sync_all()
    """

    def __init__(
        self,
        operation: str,
        notifier: Optional[Notifier] = None,
        recoverable: bool = True,
    ):
        self.operation = operation
        self.notifier = notifier
        self.recoverable = recoverable

    def __enter__(self) -> ErrorContext:
        logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            logger.debug(f"Completed: {self.operation}")
            return False

        if isinstance(exc_val, SuccessCoreError):
            handle_error(exc_val, notifier=self.notifier)
        else:
            handle_error(
                exc_val,
                notifier=self.notifier,
                user_message=f"Error during: {self.operation}",
            )

        # Suppress exception if recoverable
        return self.recoverable and exc_type is not None and issubclass(exc_type, Exception)


def error_boundary(
    default_return: Any = None,
    log: bool = True,
):
    """
    Decorator that degrades a failing call to `default_return`.

    Usage:
        @error_boundary(default_return=None)
        def parse_session(raw: str) -> dict:
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if log:
                    logger.error(
                        f"Error in {func.__name__}: {e}",
                        exc_info=True,
                    )
                return default_return

        return wrapper

    return decorator
