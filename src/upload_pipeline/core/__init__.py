"""Core utilities and shared components for the upload pipeline."""

from .classifier import classify, classify_path
from .config import load_config
from .logging_config import get_logger, setup_logger
from .exceptions import (
    UploadPipelineError,
    ConfigurationError,
    UploadNotFound,
    InvalidFolderError,
    TooLarge,
    ToolFailure,
    CompressionFailed,
    with_error_handling,
)
from .models import (
    Category,
    CompressionPass,
    CompressionResult,
    ImagePolicy,
    LadderRung,
    PdfToolConfig,
    PipelineConfig,
    SizeBudgets,
)

__all__ = [
    "Category",
    "CompressionPass",
    "CompressionResult",
    "ImagePolicy",
    "LadderRung",
    "PdfToolConfig",
    "PipelineConfig",
    "SizeBudgets",
    "classify",
    "classify_path",
    "load_config",
    "setup_logger",
    "get_logger",
    "UploadPipelineError",
    "ConfigurationError",
    "UploadNotFound",
    "InvalidFolderError",
    "TooLarge",
    "ToolFailure",
    "CompressionFailed",
    "with_error_handling",
]
