"""Factory classes for creating configured service instances."""

from typing import Optional

from .config import load_config
from .models import PipelineConfig
from .observability import MetricsCollector, StructuredLogger
from .protocols import LoggerProtocol, ToolRunnerProtocol
from .services import (
    CompressionDispatcher,
    ImageCompressorService,
    PdfCompressorService,
)
from .staging import PathLockRegistry
from .tool_runner import SubprocessToolRunner


class LoggerFactory:
    """Factory for creating logger instances."""

    @staticmethod
    def create_logger(name: str, level: Optional[str] = None) -> LoggerProtocol:
        """Create a configured structured logger."""
        return StructuredLogger(name, level)


class ToolRunnerFactory:
    """Factory for creating external tool runners."""

    @staticmethod
    def create_tool_runner() -> ToolRunnerProtocol:
        return SubprocessToolRunner()


class CompressionPipelineFactory:
    """Factory for creating the complete compression pipeline."""

    @staticmethod
    def create_pipeline(
        config: Optional[PipelineConfig] = None,
        tool_runner: Optional[ToolRunnerProtocol] = None,
        logger: Optional[LoggerProtocol] = None,
        metrics_collector: Optional[MetricsCollector] = None,
    ) -> CompressionDispatcher:
        """Create a fully configured dispatcher.

        The config is read from the environment when not given; it should
        be built once per process and shared.
        """
        if config is None:
            config = load_config()

        if tool_runner is None:
            tool_runner = ToolRunnerFactory.create_tool_runner()

        if logger is None:
            logger = LoggerFactory.create_logger("upload-pipeline.pipeline")

        image_compressor = ImageCompressorService(config, logger)
        pdf_compressor = PdfCompressorService(config, tool_runner, logger)

        return CompressionDispatcher(
            config=config,
            image_compressor=image_compressor,
            pdf_compressor=pdf_compressor,
            logger=logger,
            metrics_collector=metrics_collector,
            path_locks=PathLockRegistry(),
        )
