"""Standardized Error Handling Utilities

Every failure inside the engine degrades functionality instead of crashing
the host application. Boundary code logs through ``handle_error`` with
``reraise=False``; internal code raises the typed errors below.
"""

from __future__ import annotations

import logging
import traceback
from contextlib import contextmanager
from enum import Enum
from typing import Any, Iterator


class ErrorLevel(Enum):
    """Error severity levels for consistent logging."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class PerfAdvisorError(Exception):
    """Base exception class for all PerfAdvisor errors."""

    def __init__(
        self, message: str, cause: Exception | None = None, context: dict | None = None
    ):
        super().__init__(message)
        self.cause = cause
        self.context = context or {}

    def __str__(self) -> str:
        base_msg = super().__str__()
        if self.cause:
            return f"{base_msg} (caused by: {self.cause})"
        return base_msg


class CapabilityUnavailableError(PerfAdvisorError):
    """Raised when a platform signal source is missing."""

    pass


class PersistenceError(PerfAdvisorError):
    """Raised when durable storage reads or writes fail."""

    pass


class StorageQuotaExceededError(PersistenceError):
    """Raised when a write would exceed the storage budget."""

    pass


class RuleEvaluationError(PerfAdvisorError):
    """Raised when an optimizer rule condition fails."""

    pass


class ConfigurationError(PerfAdvisorError):
    """Raised when configuration is invalid or missing."""

    pass


def handle_error(
    error: Exception,
    operation: str,
    error_type: type[PerfAdvisorError] = PerfAdvisorError,
    level: ErrorLevel = ErrorLevel.WARNING,
    context: dict | None = None,
    logger: logging.Logger | None = None,
    reraise: bool = True,
) -> PerfAdvisorError | None:
    """Standardized error handling with consistent logging and error transformation.

    Args:
        error: Original exception that occurred
        operation: Description of operation that failed
        error_type: Type of PerfAdvisorError to build
        level: Logging level for the error
        context: Additional context information
        logger: Logger to use (defaults to module logger)
        reraise: Whether to raise the transformed exception

    Returns:
        The transformed error if reraise=False, otherwise None

    Raises:
        PerfAdvisorError: Transformed error if reraise=True
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    error_context = dict(context or {})
    error_context.update(
        {
            "operation": operation,
            "original_error_type": type(error).__name__,
        }
    )

    if isinstance(error, error_type):
        transformed_error = error
    else:
        transformed_error = error_type(
            f"Failed to {operation}: {error}", cause=error, context=error_context
        )

    log_message = f"{operation.capitalize()} failed: {error}"
    context_str = ", ".join(
        f"{k}={v}" for k, v in error_context.items() if k != "operation"
    )
    if context_str:
        log_message += f" (context: {context_str})"

    getattr(logger, level.value)(log_message)

    if level in (ErrorLevel.ERROR, ErrorLevel.CRITICAL):
        logger.debug(f"Traceback for {operation}: {traceback.format_exc()}")

    if reraise:
        if transformed_error is error:
            raise error
        raise transformed_error from error
    return transformed_error


@contextmanager
def error_context(
    operation: str,
    error_type: type[PerfAdvisorError] = PerfAdvisorError,
    level: ErrorLevel = ErrorLevel.WARNING,
    context: dict | None = None,
    logger: logging.Logger | None = None,
    reraise: bool = True,
) -> Iterator[None]:
    """Context manager for standardized error handling.

    Usage:
        with error_context("flush metrics", PersistenceError, reraise=False):
            storage.set(key, payload)

    With ``reraise=False`` the failure is logged and execution continues
    after the ``with`` block.
    """
    try:
        yield
    except Exception as e:
        handle_error(e, operation, error_type, level, context, logger, reraise=reraise)


def describe_error(error: BaseException) -> dict[str, Any]:
    """Small serializable description of an exception for metric metadata."""
    return {"error": str(error), "error_type": type(error).__name__}
