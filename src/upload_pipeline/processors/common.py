"""Common functions shared across processor implementations."""

import time
from pathlib import Path
from typing import Callable, List, Sequence, Tuple, Union

from ..core import PipelineConfig, UploadPipelineError, get_logger
from ..core.error_handling import BatchOperationContextManager
from ..core.exceptions import format_bytes
from ..core.models import FileOutcome
from ..core.protocols import Dispatcher


def compress_single_file(dispatcher: Dispatcher, path: Union[str, Path]) -> FileOutcome:
    """Compress one file and turn a pipeline failure into a FileOutcome."""
    logger = get_logger("upload-pipeline.processor")
    outcome = FileOutcome(source_path=str(path))

    try:
        outcome.result = dispatcher.compress(path)
        outcome.success = True
        logger.debug(f"[{path}] Compression completed successfully.")
    except UploadPipelineError as e:
        outcome.success = False
        outcome.error = str(e)
        outcome.error_type = type(e).__name__
        outcome.http_status = e.http_status
        logger.error(f"[{path}] Failed compression due to {type(e).__name__}: {e}")

    return outcome


def log_configuration(config: PipelineConfig) -> None:
    """Log the effective pipeline configuration."""
    logger = get_logger("upload-pipeline.processor")
    logger.info("=" * 80)
    logger.info("UPLOAD COMPRESSION PIPELINE")
    logger.info("=" * 80)
    logger.info("BUDGETS:")
    logger.info(f"  Image: {format_bytes(config.budgets.image)}")
    logger.info(f"  PDF:   {format_bytes(config.budgets.pdf)}")
    logger.info(f"  Other: {format_bytes(config.budgets.other)}")
    logger.info("IMAGE LADDER:")
    logger.info("  " + " -> ".join(rung.label() for rung in config.ladder))
    logger.info(f"  Policy: {config.image_policy.value}, lossy format: {config.lossy_format}")
    logger.info("PDF TOOL:")
    logger.info(
        f"  {config.pdf.command} @ {config.pdf.resolution_dpi} DPI, "
        f"timeout {config.pdf.timeout_seconds:.0f}s"
    )
    logger.info("=" * 80)


def log_final_statistics(total_time: float, outcomes: List[FileOutcome]) -> None:
    """Log final processing statistics."""
    logger = get_logger("upload-pipeline.processor")
    succeeded = [o for o in outcomes if o.success]
    saved = sum(
        o.result.original_size - o.result.final_size for o in succeeded if o.result
    )

    logger.info("=" * 80)
    logger.info("COMPRESSION COMPLETED")
    logger.info("=" * 80)
    logger.info(f"Total execution time: {total_time:.1f}s")
    logger.info(f"Successfully stored: {len(succeeded)}")
    logger.info(f"Rejected: {len(outcomes) - len(succeeded)}")
    logger.info(f"Bytes saved: {format_bytes(saved)}")
    logger.info("=" * 80)


def count_results(outcomes: List[FileOutcome]) -> Tuple[int, int]:
    """
    Count successful and failed outcomes.

    Returns:
        Tuple of (stored_count, error_count)
    """
    stored = sum(1 for o in outcomes if o.success)
    return stored, len(outcomes) - stored


def run_processing(
    paths: Sequence[Union[str, Path]],
    dispatcher: Dispatcher,
    process_batch_fn: Callable[[Sequence[Union[str, Path]], Dispatcher], List[FileOutcome]],
    config: PipelineConfig,
) -> List[FileOutcome]:
    """Compress ``paths`` with ``process_batch_fn`` and log a summary."""
    log_configuration(config)
    start_time = time.time()

    with BatchOperationContextManager(operation_name="Upload compression") as batch_manager:
        outcomes = process_batch_fn(paths, dispatcher)
        for outcome in outcomes:
            if not outcome.success:
                batch_manager.add_error(outcome.error, item_identifier=outcome.source_path)

    log_final_statistics(time.time() - start_time, outcomes)
    return outcomes
