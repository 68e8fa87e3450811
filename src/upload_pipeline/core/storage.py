"""Storage layout for uploads: folder allow-list and collision-free names."""

import os
import uuid
from pathlib import Path
from typing import Iterable

from .exceptions import InvalidFolderError, UploadNotFound
from .models import PipelineConfig


def validate_folder(folder: str, allowed_folders: Iterable[str]) -> str:
    """
    Check ``folder`` against the allow-list.

    Raises:
        InvalidFolderError: If the folder is empty or not allowed.
    """
    allowed = tuple(allowed_folders)
    if not folder or folder not in allowed:
        raise InvalidFolderError(f"Invalid folder. Use: {', '.join(allowed)}")
    return folder


def storage_filename(original_name: str) -> str:
    """
    Random storage name that keeps the original extension, lowercased.

    Names never derive from caller input, so two uploads cannot target
    the same path.
    """
    ext = os.path.splitext(os.path.basename(original_name))[1].lower()
    return f"{uuid.uuid4()}{ext}"


def storage_path(config: PipelineConfig, folder: str, original_name: str) -> Path:
    """
    Calculate where a new upload is written.

    Args:
        config: Pipeline configuration (upload_dir, allowed_folders)
        folder: Target folder, checked against the allow-list
        original_name: Client supplied filename, used only for its extension

    Returns:
        Absolute destination path inside ``config.upload_dir``
    """
    validate_folder(folder, config.allowed_folders)
    return Path(config.upload_dir).resolve() / folder / storage_filename(original_name)


def public_url(config: PipelineConfig, folder: str, filename: str) -> str:
    return f"{config.base_url.rstrip('/')}/files/{folder}/{filename}"


def remove_stored(config: PipelineConfig, folder: str, filename: str) -> Path:
    """
    Delete a stored upload.

    Only the base name of ``filename`` is used, so ``../x`` resolves to
    ``x`` inside ``folder``.

    Raises:
        InvalidFolderError: If the folder is not allowed.
        UploadNotFound: If no such file is stored.
    """
    validate_folder(folder, config.allowed_folders)
    name = os.path.basename(filename)
    path = Path(config.upload_dir).resolve() / folder / name
    if not name or not path.is_file():
        raise UploadNotFound(f"File not found: {folder}/{name}")
    path.unlink()
    return path
