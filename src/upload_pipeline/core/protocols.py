"""Protocol definitions for dependency injection and testability."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Protocol, Sequence

from .models import CompressionPass, CompressionResult


@dataclass
class ToolRun:
    """Outcome of one external tool invocation."""

    exit_code: int
    output_path: Path
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0


class ToolRunnerProtocol(Protocol):
    """Protocol for running an external command with a hard timeout.

    Implementations raise ``ToolFailure`` when the process cannot be
    started or is killed on timeout, and return a ``ToolRun`` otherwise.
    """

    def run(self, args: Sequence[str], output_path: Path, timeout: float) -> ToolRun:
        """Run ``args`` and report the exit code and output path."""
        ...


class LoggerProtocol(Protocol):
    """Protocol for logging operations."""

    def debug(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log debug message."""
        ...

    def info(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log info message."""
        ...

    def warning(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log warning message."""
        ...

    def error(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log error message."""
        ...


@dataclass
class CompressionOutcome:
    """What a compressor leaves behind: the final size and the passes tried."""

    final_size: int
    strategy: str
    passes: List[CompressionPass]


class CompressorService(ABC):
    """Abstract per-category compressor."""

    @abstractmethod
    def compress(self, path: Path, budget: int, context: Any = None) -> CompressionOutcome:
        """Compress the file at ``path`` in place towards ``budget`` bytes."""
        ...


class Dispatcher(ABC):
    """Abstract single-file pipeline."""

    @abstractmethod
    def compress(self, file_path: Path) -> CompressionResult:
        """Run the pipeline on one uploaded file."""
        ...
