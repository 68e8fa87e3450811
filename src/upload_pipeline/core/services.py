"""Compression services: image ladder, PDF optimization and the dispatcher."""

import time
from functools import partial
from pathlib import Path
from typing import Dict, List, Optional, Union

from PIL import Image

from .classifier import classify
from .error_handling import delete_on_failure
from .exceptions import (
    CompressionFailed,
    TooLarge,
    ToolFailure,
    UploadNotFound,
    UploadPipelineError,
)
from .image_utils import (
    describe_image,
    encode_image,
    open_image,
    output_format_for,
    resize_to_width,
)
from .models import (
    Category,
    CompressionPass,
    CompressionResult,
    ImagePolicy,
    LadderRung,
    PipelineConfig,
)
from .observability import LogContext, MetricsCollector, PerformanceMetrics
from .protocols import (
    CompressionOutcome,
    CompressorService,
    Dispatcher,
    LoggerProtocol,
    ToolRunnerProtocol,
)
from .staging import (
    PathLockRegistry,
    StagedFile,
    discard,
    promote,
    stage,
    sweep_temporaries,
)
from .tool_runner import ghostscript_args

# Errors Pillow raises for undecodable or unencodable images.
IMAGE_ERRORS = (OSError, SyntaxError, ValueError, Image.DecompressionBombError)


class ImageCompressorService(CompressorService):
    """Best-effort resize/re-encode ladder for images."""

    def __init__(self, config: PipelineConfig, logger: LoggerProtocol):
        self._config = config
        self._logger = logger

    @staticmethod
    def _encode(
        image: Image.Image,
        rung: LadderRung,
        format_type: str,
        source: Path,
        dest: Path,
    ) -> None:
        encode_image(resize_to_width(image, rung.max_width), dest, format_type, rung.quality)

    def compress(
        self, path: Path, budget: int, context: Optional[LogContext] = None
    ) -> CompressionOutcome:
        """
        Walk the ladder until a candidate fits ``budget``.

        The smallest candidate seen so far is kept on disk, every other one
        is discarded immediately. Once the ladder ends (or a rung fits) the
        best candidate replaces the original, unless it is not smaller than
        the original.

        Raises:
            CompressionFailed: Under the strict policy when the best result
                is over budget, or when no candidate could be produced for
                an original that is itself over budget.
        """
        context = (context or LogContext()).with_operation("compress_image")
        original_size = path.stat().st_size
        format_type = output_format_for(path.suffix, self._config.lossy_format)
        passes: List[CompressionPass] = []

        try:
            image = open_image(path)
        except IMAGE_ERRORS as exc:
            self._logger.warning(f"Could not decode image: {exc}", context)
            passes.append(CompressionPass(label="decode", error=str(exc)))
            return self._keep_original(original_size, budget, passes, "no candidate produced")

        self._logger.debug(
            "Starting image ladder",
            context,
            **describe_image(image),
            output_format=format_type,
            original_size=original_size,
            budget=budget,
        )

        best: Optional[StagedFile] = None
        best_pass: Optional[CompressionPass] = None
        promoted = False
        try:
            for rung in self._config.ladder:
                record = CompressionPass(
                    label=rung.label(), max_width=rung.max_width, quality=rung.quality
                )
                passes.append(record)
                try:
                    candidate = stage(path, partial(self._encode, image, rung, format_type))
                except IMAGE_ERRORS as exc:
                    record.error = str(exc)
                    self._logger.warning(f"Pass {rung.label()} failed: {exc}", context)
                    continue

                record.size = candidate.size
                if best is None or candidate.size < best.size:
                    if best is not None:
                        discard(best.path)
                    best, best_pass = candidate, record
                else:
                    discard(candidate.path)

                self._logger.debug(
                    f"Pass {rung.label()}", context, size=candidate.size, best=best.size
                )
                if candidate.size <= budget:
                    break

            if best is None:
                return self._keep_original(
                    original_size, budget, passes, "no ladder rung produced an image"
                )

            final_size = min(best.size, original_size)
            if final_size > budget and self._config.image_policy is ImagePolicy.STRICT:
                raise CompressionFailed(
                    "No ladder rung met the image limit", size=final_size, budget=budget
                )

            if best.size >= original_size:
                self._logger.info(
                    "Best candidate is not smaller than the original, keeping original",
                    context,
                    original_size=original_size,
                    best=best.size,
                )
                return CompressionOutcome(original_size, "original", passes)

            promote(best.path, path)
            promoted = True
            best_pass.accepted = True
        finally:
            if best is not None and not promoted:
                discard(best.path)

        if best.size > budget:
            self._logger.warning(
                "Image still over budget after full ladder, accepting best effort",
                context,
                size=best.size,
                budget=budget,
            )
        return CompressionOutcome(best.size, f"ladder {best_pass.label}", passes)

    def _keep_original(
        self,
        original_size: int,
        budget: int,
        passes: List[CompressionPass],
        reason: str,
    ) -> CompressionOutcome:
        if original_size > budget:
            raise CompressionFailed(reason, size=original_size, budget=budget)
        return CompressionOutcome(original_size, "original", passes)


class PdfCompressorService(CompressorService):
    """One Ghostscript pass with a hard timeout, falling back to the original."""

    def __init__(
        self,
        config: PipelineConfig,
        tool_runner: ToolRunnerProtocol,
        logger: LoggerProtocol,
    ):
        self._config = config
        self._tool_runner = tool_runner
        self._logger = logger

    def _optimize(self, source: Path, dest: Path) -> None:
        tool = self._config.pdf
        args = ghostscript_args(tool, source, dest)
        try:
            run = self._tool_runner.run(args, dest, tool.timeout_seconds)
        except OSError as exc:
            raise ToolFailure(f"{tool.command} crashed: {exc}") from exc

        if run.stderr:
            self._logger.debug(f"{tool.command} stderr: {run.stderr.strip()[:2000]}")
        if run.exit_code != 0:
            raise ToolFailure(
                f"{tool.command} exited with code {run.exit_code}",
                exit_code=run.exit_code,
            )
        if not dest.exists() or dest.stat().st_size == 0:
            raise ToolFailure(f"{tool.command} produced no output")

    def compress(
        self, path: Path, budget: int, context: Optional[LogContext] = None
    ) -> CompressionOutcome:
        """
        Optimize a PDF once and enforce the PDF budget.

        Raises:
            TooLarge: The retained file (optimized or original) is over
                budget. When the tool failed, the ``ToolFailure`` is chained
                as the cause.
        """
        context = (context or LogContext()).with_operation("compress_pdf")
        original_size = path.stat().st_size
        tool = self._config.pdf
        record = CompressionPass(label=f"{tool.command}@{tool.resolution_dpi}dpi")

        try:
            optimized = stage(path, self._optimize)
        except ToolFailure as failure:
            record.error = str(failure)
            self._logger.warning(
                f"PDF optimization failed, using original: {failure}",
                context,
                original_size=original_size,
            )
            if original_size > budget:
                raise TooLarge(original_size, budget, Category.PDF.value) from failure
            return CompressionOutcome(original_size, "original (tool failed)", [record])

        record.size = optimized.size
        if optimized.size < original_size:
            promote(optimized.path, path)
            record.accepted = True
            final_size, strategy = optimized.size, "optimized"
            self._logger.info(
                "PDF optimized",
                context,
                original_size=original_size,
                size=optimized.size,
            )
        else:
            discard(optimized.path)
            final_size, strategy = original_size, "original"
            self._logger.info(
                "PDF optimization did not reduce size, keeping original",
                context,
                original_size=original_size,
                size=optimized.size,
            )

        if final_size > budget:
            raise TooLarge(final_size, budget, Category.PDF.value)
        return CompressionOutcome(final_size, strategy, [record])


class CompressionDispatcher(Dispatcher):
    """Runs the whole pipeline for one uploaded file."""

    def __init__(
        self,
        config: PipelineConfig,
        image_compressor: CompressorService,
        pdf_compressor: CompressorService,
        logger: LoggerProtocol,
        metrics_collector: Optional[MetricsCollector] = None,
        path_locks: Optional[PathLockRegistry] = None,
    ):
        self._config = config
        self._compressors: Dict[Category, CompressorService] = {
            Category.IMAGE: image_compressor,
            Category.PDF: pdf_compressor,
        }
        self._logger = logger
        self._metrics_collector = metrics_collector
        self._path_locks = path_locks or PathLockRegistry()

    @property
    def config(self) -> PipelineConfig:
        return self._config

    def compress(self, file_path: Union[str, Path]) -> CompressionResult:
        """
        Compress one uploaded file in place.

        On any failure the file is deleted before the error propagates.
        Temporary siblings never outlive the call.

        Raises:
            UploadNotFound: ``file_path`` is not an existing file.
            TooLarge: The file cannot be brought under its category budget.
            CompressionFailed: Strict image policy failure, or an unexpected
                error while compressing.
        """
        path = Path(file_path)
        context = LogContext(component="dispatcher").with_metadata(file=path.name)
        start_time = time.time()
        result: Optional[CompressionResult] = None
        error_message: Optional[str] = None

        with self._path_locks.hold(path):
            try:
                if not path.is_file():
                    raise UploadNotFound(f"Uploaded file not found: {path}")
                with delete_on_failure(path):
                    result = self._run(path, context, start_time)
                return result
            except UploadPipelineError as exc:
                error_message = str(exc)
                self._logger.error(
                    f"Pipeline failed: {exc}", context, error=type(exc).__name__
                )
                raise
            finally:
                sweep_temporaries(path)
                self._record(start_time, result, error_message)

    def _run(self, path: Path, context: LogContext, start_time: float) -> CompressionResult:
        category = classify(path.suffix)
        budget = self._config.budgets.for_category(category)
        original_size = path.stat().st_size
        context = context.with_metadata(category=category.value)

        self._logger.info(
            "Compressing upload", context, original_size=original_size, budget=budget
        )

        if category is Category.OTHER:
            if original_size > budget:
                raise TooLarge(original_size, budget, category.value)
            outcome = CompressionOutcome(original_size, "size check", [])
        else:
            outcome = self._compressors[category].compress(path, budget, context)

        result = CompressionResult(
            path=str(path),
            category=category,
            original_size=original_size,
            final_size=outcome.final_size,
            budget=budget,
            within_budget=outcome.final_size <= budget,
            strategy=outcome.strategy,
            passes=outcome.passes,
            processing_time=time.time() - start_time,
        )
        self._logger.info(
            "Upload stored",
            context,
            size=result.final_size,
            strategy=result.strategy,
            passes=len(result.passes),
        )
        return result

    def _record(
        self,
        start_time: float,
        result: Optional[CompressionResult],
        error_message: Optional[str],
    ) -> None:
        if self._metrics_collector is None:
            return
        metadata = {}
        if result is not None:
            metadata = {
                "category": result.category.value,
                "bytes_saved": result.original_size - result.final_size,
            }
        self._metrics_collector.record_metric(
            PerformanceMetrics(
                operation="compress",
                start_time=start_time,
                end_time=time.time(),
                success=result is not None,
                error_message=error_message,
                metadata=metadata,
            )
        )
