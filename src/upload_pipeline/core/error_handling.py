# src/upload_pipeline/core/error_handling.py

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from .exceptions import CompressionFailed, UploadPipelineError


def remove_upload(path: Union[str, Path]) -> bool:
    """Delete an uploaded file; returns False when it was already gone."""
    try:
        Path(path).unlink()
        return True
    except FileNotFoundError:
        return False


@contextmanager
def delete_on_failure(path: Union[str, Path]) -> Iterator[None]:
    """
    Delete ``path`` if the wrapped block raises, then re-raise.

    Pipeline errors propagate unchanged; anything else is wrapped in
    ``CompressionFailed`` so callers only ever see the pipeline taxonomy.
    """
    logger = logging.getLogger("upload-pipeline.errors")
    try:
        yield
    except UploadPipelineError as exc:
        if remove_upload(path):
            logger.info(f"Deleted {path} after {type(exc).__name__}: {exc}")
        raise
    except Exception as exc:
        remove_upload(path)
        logger.error(f"Unexpected error while compressing {path}: {exc}", exc_info=True)
        raise CompressionFailed(f"Unexpected error: {exc}") from exc


class BatchOperationContextManager:
    """
    Context manager for batch operations to collect and summarize errors.
    """
    def __init__(self, operation_name="Batch Operation"):
        self.operation_name = operation_name
        self.errors = []
        self.logger = logging.getLogger("upload-pipeline." + self.__class__.__name__)

    def __enter__(self):
        self.logger.info(f"Starting {self.operation_name}.")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.errors:
            self.logger.warning(
                f"{self.operation_name} completed with {len(self.errors)} error(s)."
            )
            for i, error_detail in enumerate(self.errors):
                self.logger.error(
                    f"  Error {i+1}/{len(self.errors)} for item "
                    f"'{error_detail['item']}': {error_detail['error']}"
                )
        elif exc_type:
            self.logger.error(
                f"{self.operation_name} failed due to an unhandled exception: {exc_val}",
                exc_info=(exc_type, exc_val, exc_tb)
            )
        else:
            self.logger.info(f"{self.operation_name} completed successfully.")
        return False

    def add_error(self, error_message: str, item_identifier: str = "Unknown item"):
        """
        Report an error for a specific item inside the 'with' block.

        Args:
            error_message (str): The error message or exception string.
            item_identifier (str): A string identifying the item that failed (e.g. a path).
        """
        self.errors.append({"item": item_identifier, "error": str(error_message)})
        self.logger.debug(f"Error added for item '{item_identifier}' in {self.operation_name}: {error_message}")

    @property
    def failed(self) -> bool:
        return bool(self.errors)
