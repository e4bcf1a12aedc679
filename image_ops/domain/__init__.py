"""Domain models for background file and image operations."""

from __future__ import annotations

from .models import (
    IMAGE_KINDS,
    CleanupReport,
    CopyRequest,
    DeleteRequest,
    ImageInfo,
    ImageRequest,
    OperationKind,
    OperationRequest,
    OperationResult,
    OperationState,
    StorageRoot,
)


__all__ = [
    "IMAGE_KINDS",
    "CleanupReport",
    "CopyRequest",
    "DeleteRequest",
    "ImageInfo",
    "ImageRequest",
    "OperationKind",
    "OperationRequest",
    "OperationResult",
    "OperationState",
    "StorageRoot",
]
