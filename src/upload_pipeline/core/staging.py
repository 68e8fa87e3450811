"""Temporary sibling files and atomic promotion.

Every compression attempt is written next to the canonical file under a
``<name>.tmp-<hex>`` path and becomes visible only through ``os.replace``,
so readers never observe a half-written upload.
"""

import os
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Union

from .logging_config import component_logger

PathLike = Union[str, Path]
Transform = Callable[[Path, Path], None]

TEMP_MARKER = ".tmp-"

logger = component_logger("staging")


@dataclass
class StagedFile:
    """A complete, closed temporary file produced by ``stage``."""

    path: Path
    size: int


def temp_sibling(canonical_path: PathLike) -> Path:
    """Return a fresh temporary path in the same directory as ``canonical_path``."""
    canonical = Path(canonical_path)
    return canonical.with_name(f"{canonical.name}{TEMP_MARKER}{uuid.uuid4().hex[:12]}")


def discard(temp_path: PathLike) -> None:
    """Delete a temporary file; a missing file is not an error."""
    try:
        Path(temp_path).unlink()
        logger.debug(f"Discarded {temp_path}")
    except FileNotFoundError:
        pass


def stage(source_path: PathLike, transform: Transform) -> StagedFile:
    """
    Run ``transform(source, temp)`` into a temporary sibling of ``source_path``.

    The source is only read. If the transform raises, or leaves no output
    behind, the temporary file is removed and the error propagates.

    Returns:
        The staged temporary file and its size in bytes.
    """
    source = Path(source_path)
    temp_path = temp_sibling(source)
    try:
        transform(source, temp_path)
        size = temp_path.stat().st_size
    except BaseException:
        discard(temp_path)
        raise
    logger.debug(f"Staged {temp_path.name} ({size:,} bytes)")
    return StagedFile(path=temp_path, size=size)


def promote(temp_path: PathLike, canonical_path: PathLike) -> None:
    """Atomically replace ``canonical_path`` with ``temp_path``."""
    os.replace(temp_path, canonical_path)
    logger.debug(f"Promoted {Path(temp_path).name} -> {Path(canonical_path).name}")


def list_temporaries(canonical_path: PathLike) -> List[Path]:
    canonical = Path(canonical_path)
    if not canonical.parent.is_dir():
        return []
    prefix = f"{canonical.name}.tmp"
    return sorted(p for p in canonical.parent.iterdir() if p.name.startswith(prefix))


def sweep_temporaries(canonical_path: PathLike) -> int:
    """Remove leftover temporary siblings of ``canonical_path``; return how many."""
    removed = 0
    for leftover in list_temporaries(canonical_path):
        discard(leftover)
        removed += 1
    if removed:
        logger.warning(f"Removed {removed} orphaned temporary file(s) for {canonical_path}")
    return removed


class PathLockRegistry:
    """Per-path locks serializing pipeline runs on one canonical path."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    @contextmanager
    def hold(self, path: PathLike) -> Iterator[None]:
        key = os.path.abspath(os.fspath(path))
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if self._users[key] == 0:
                    del self._users[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
