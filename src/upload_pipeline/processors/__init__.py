"""Entry points that run the pipeline over one or more uploaded files."""

from .serial import process_batch as serial_process_batch
from .asyncio_processor import compress_async

__all__ = [
    "serial_process_batch",
    "compress_async",
]
