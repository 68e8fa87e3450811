"""AsyncIO entry point - awaits one file's pipeline without blocking the loop."""

import asyncio
from pathlib import Path
from typing import Union

from ..core import CompressionResult, get_logger
from ..core.protocols import Dispatcher


async def compress_async(
    dispatcher: Dispatcher, file_path: Union[str, Path]
) -> CompressionResult:
    """
    Run ``dispatcher.compress`` in a worker thread.

    Image encoding and the PDF tool wait are blocking, so they are moved
    off the event loop. Cancelling the awaiting task does not interrupt
    the pipeline: it runs to completion (bounded by the tool timeout) and
    still cleans up its temporary files.
    """
    logger = get_logger("upload-pipeline.asyncio")
    logger.debug(f"[{Path(file_path).name}] Scheduling compression in worker thread")
    return await asyncio.to_thread(dispatcher.compress, file_path)
