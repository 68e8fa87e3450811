"""Map file extensions to compression categories."""

from pathlib import Path
from typing import FrozenSet, Union

from .models import Category

IMAGE_EXTENSIONS: FrozenSet[str] = frozenset(
    {"jpg", "jpeg", "png", "webp", "gif", "bmp", "tif", "tiff"}
)
PDF_EXTENSIONS: FrozenSet[str] = frozenset({"pdf"})


def normalize_extension(extension: str) -> str:
    """Lowercase an extension and strip its leading dot(s)."""
    return extension.strip().lstrip(".").lower()


def classify(extension: str) -> Category:
    """
    Classify a file extension.

    Total over all inputs: anything that is not a known image or PDF
    extension, including the empty string, is ``Category.OTHER``.
    """
    ext = normalize_extension(extension)
    if ext in IMAGE_EXTENSIONS:
        return Category.IMAGE
    if ext in PDF_EXTENSIONS:
        return Category.PDF
    return Category.OTHER


def classify_path(path: Union[str, Path]) -> Category:
    return classify(Path(path).suffix)
