"""Domain model for background file and image operations.

Type-safe objects shared by the orchestrator, the task layer and the worker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union


# ==============================================================================
# Operation kinds
# ==============================================================================


class OperationKind(Enum):
    """Kind of background operation."""

    COPY = "copy"
    DELETE = "delete"
    VALIDATE = "validate"
    EXTRACT_INFO = "extract-info"
    EXTRACT_AND_VALIDATE = "extract-and-validate"


# ==============================================================================
# Operation state
# ==============================================================================


@dataclass
class OperationState:
    """Mutable state owned by one orchestrator.

    Only the orchestrator writes these fields, and only from its owning
    context while handling a start request or a task event.
    """

    is_copying: bool = False
    status: str = ""
    copied_size: int = 0
    total_size: int = 0
    deleting_path: str = ""
    pending_cleanup_dir: str = ""
    is_processing_image: bool = False

    @property
    def progress_percent(self) -> int:
        """Integer-truncated copy progress, 0 while the total is unknown."""
        if self.total_size <= 0:
            return 0
        return int((self.copied_size * 100) // self.total_size)


# ==============================================================================
# Requests
# ==============================================================================


@dataclass(frozen=True)
class CopyRequest:
    source: str
    destination: str
    cleanup_dir: str = ""
    kind: OperationKind = field(default=OperationKind.COPY, init=False)


@dataclass(frozen=True)
class DeleteRequest:
    path: str
    kind: OperationKind = field(default=OperationKind.DELETE, init=False)


@dataclass(frozen=True)
class ImageRequest:
    """Validation or info extraction of one image archive."""

    path: str
    kind: OperationKind = OperationKind.VALIDATE

    def __post_init__(self) -> None:
        if self.kind not in IMAGE_KINDS:
            raise ValueError(f"Not an image operation: {self.kind}")


IMAGE_KINDS = frozenset(
    {
        OperationKind.VALIDATE,
        OperationKind.EXTRACT_INFO,
        OperationKind.EXTRACT_AND_VALIDATE,
    }
)

OperationRequest = Union[CopyRequest, DeleteRequest, ImageRequest]


# ==============================================================================
# Results
# ==============================================================================


@dataclass(frozen=True)
class OperationResult:
    """Terminal payload of one task.

    ``image_name``, ``android_version`` and ``archive_path`` are only filled
    in by the image operations.
    """

    kind: OperationKind
    success: bool
    message: str = ""
    image_name: str = ""
    android_version: str = ""
    archive_path: str = ""

    @classmethod
    def failure(cls, kind: OperationKind, message: str) -> OperationResult:
        return cls(kind=kind, success=False, message=message)


@dataclass(frozen=True)
class ImageInfo:
    """Identity of a firmware image archive."""

    image_name: str
    android_version: str


# ==============================================================================
# Storage
# ==============================================================================


@dataclass(frozen=True)
class StorageRoot:
    """Volume containing a path, measured at query time."""

    path: str
    total_bytes: int
    available_bytes: int

    @property
    def available_gb(self) -> float:
        return self.available_bytes / (1024**3)


@dataclass
class CleanupReport:
    """Outcome of a best-effort directory removal."""

    path: str
    removed: bool = False
    forced: bool = False
    failures: list[str] = field(default_factory=list)

    def record(self, message: str) -> None:
        self.failures.append(message)
