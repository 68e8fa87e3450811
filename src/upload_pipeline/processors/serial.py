"""Serial processor implementation - compresses files one by one."""

from pathlib import Path
from typing import List, Sequence, Union

from ..core.models import FileOutcome
from ..core.protocols import Dispatcher
from .common import compress_single_file


def process_batch(
    paths: Sequence[Union[str, Path]], dispatcher: Dispatcher
) -> List[FileOutcome]:
    """
    Compresses independent uploads serially, in the current thread.

    Every file is its own unit of work: a failure only removes that file
    and the remaining files are still processed.

    Args:
        paths: Files to compress in place.
        dispatcher: Pipeline used for every file.

    Returns:
        A list of `FileOutcome` objects, one per path, in input order.
    """
    results = []

    for path in paths:
        result = compress_single_file(dispatcher, path)
        results.append(result)

    return results
