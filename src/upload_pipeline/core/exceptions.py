"""Custom exceptions and error handling utilities for the upload pipeline."""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Optional, TypeVar

from .logging_config import get_logger


def format_bytes(size: int) -> str:
    """Render a byte count the way error messages show it (e.g. ``5.0 MB``)."""
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    if size >= 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size} B"


class UploadPipelineError(Exception):
    """Base exception for all upload pipeline errors."""

    http_status = 500


class ConfigurationError(UploadPipelineError):
    """Error raised for invalid configuration options."""


class UploadNotFound(UploadPipelineError):
    """Error raised when the file handed to the pipeline does not exist."""

    http_status = 404


class InvalidFolderError(UploadPipelineError):
    """Error raised when a storage folder is not on the allow-list."""

    http_status = 400


class TooLarge(UploadPipelineError):
    """The stored file exceeds the byte budget of its category."""

    http_status = 413

    def __init__(self, size: int, budget: int, category: str):
        self.size = size
        self.budget = budget
        self.category = category
        super().__init__(
            f"{category} file is {format_bytes(size)}, "
            f"exceeding the {format_bytes(budget)} limit"
        )


class ToolFailure(UploadPipelineError):
    """An external optimization tool failed, crashed or timed out."""

    http_status = 502

    def __init__(
        self,
        reason: str,
        exit_code: Optional[int] = None,
        timed_out: bool = False,
    ):
        self.reason = reason
        self.exit_code = exit_code
        self.timed_out = timed_out
        super().__init__(reason)


class CompressionFailed(UploadPipelineError):
    """No compression pass produced an acceptable result."""

    http_status = 422

    def __init__(
        self,
        reason: str,
        size: Optional[int] = None,
        budget: Optional[int] = None,
    ):
        self.reason = reason
        self.size = size
        self.budget = budget
        message = reason
        if size is not None and budget is not None:
            message = (
                f"{reason} (best result {format_bytes(size)}, "
                f"limit {format_bytes(budget)})"
            )
        super().__init__(message)


F = TypeVar("F", bound=Callable[..., Any])


def with_error_handling(func: F) -> F:
    """Wrap a function with standardized error handling."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:  # type: ignore[override]
        logger = get_logger("upload-pipeline.errors")
        try:
            return func(*args, **kwargs)
        except UploadPipelineError:
            logger.error("Pipeline error", exc_info=True)
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Unhandled error in {func.__name__}: {exc}", exc_info=True)
            raise CompressionFailed(str(exc)) from exc

    return wrapper  # type: ignore[return-value]
