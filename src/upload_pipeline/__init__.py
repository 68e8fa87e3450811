"""Size-bounded compression pipeline for uploaded files."""

__version__ = "0.1.0"
