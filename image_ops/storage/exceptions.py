"""Custom exceptions for file and image operations.

Lower layers raise these so callers get specific errors instead of booleans.
The worker turns them into failed results and the orchestrator reports them as
status text, so nothing here ever reaches the user as a raw fault.

Exception Hierarchy:
    ImageOpsError (base)
        ├── OperationError
        │   ├── OperationBusyError
        │   └── DestinationDirectoryError
        ├── TransferError
        │   ├── SourceNotFoundError
        │   ├── CopyOperationError
        │   └── DeleteOperationError
        └── ImageArchiveError
            ├── UnsupportedArchiveError
            ├── CorruptArchiveError
            └── ImageNotFoundError

Usage:
    from image_ops.storage.exceptions import SourceNotFoundError

    if not source.exists():
        raise SourceNotFoundError(source)
"""

from __future__ import annotations

from os import PathLike
from typing import Union


StrPath = Union[str, "PathLike[str]"]


class ImageOpsError(Exception):
    """Base exception for all image-ops errors."""



class OperationError(ImageOpsError):
    """Base exception for rejected operation requests."""



class OperationBusyError(OperationError):
    """A conflicting operation is still in flight."""

    def __init__(self, status: str, active: str = ""):
        self.status = status
        self.active = active
        super().__init__(status)


class DestinationDirectoryError(OperationError):
    """The destination's parent directory could not be created."""

    def __init__(self, directory: StrPath, reason: str = ""):
        self.directory = str(directory)
        self.reason = reason
        msg = "Failed to create destination directory."
        if reason:
            msg = f"{msg[:-1]}: {reason}"
        super().__init__(msg)


class TransferError(ImageOpsError):
    """Base exception for copy and delete failures."""



class SourceNotFoundError(TransferError):
    """Source path does not exist."""

    def __init__(self, path: StrPath):
        self.path = str(path)
        super().__init__(f"Source does not exist: {self.path}")


class CopyOperationError(TransferError):
    """Generic copy failure."""

    def __init__(self, message: str, source: str = None, destination: str = None):
        self.source = source
        self.destination = destination
        super().__init__(message)


class DeleteOperationError(TransferError):
    """Generic delete failure."""

    def __init__(self, message: str, path: str = None):
        self.path = path
        super().__init__(message)


class ImageArchiveError(ImageOpsError):
    """Base exception for image archive failures."""

    def __init__(self, message: str, path: StrPath = None):
        self.path = str(path) if path is not None else None
        super().__init__(message)


class UnsupportedArchiveError(ImageArchiveError):
    """Archive type is not one of the supported image formats."""

    def __init__(self, path: StrPath):
        super().__init__(f"Unsupported image archive: {path}", path)


class CorruptArchiveError(ImageArchiveError):
    """Archive could not be read to the end."""

    def __init__(self, path: StrPath, reason: str):
        self.reason = reason
        super().__init__(f"Image archive is corrupt: {path} ({reason})", path)


class ImageNotFoundError(ImageArchiveError):
    """Archive does not contain an image tar."""

    def __init__(self, path: StrPath):
        super().__init__(f"No .tar image found in archive: {path}", path)
