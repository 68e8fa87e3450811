"""Testing utilities and fakes for the upload pipeline."""

from .fakes import (
    FakeToolRunner,
    FakeLogger,
    create_gradient_16bit,
    create_test_image,
    write_blob,
    write_pdf,
)

__all__ = [
    "FakeToolRunner",
    "FakeLogger",
    "create_gradient_16bit",
    "create_test_image",
    "write_blob",
    "write_pdf",
]
