"""Background orchestration of copy, delete and disk-image operations."""

from .__version__ import __version__


__all__ = ["__version__"]
