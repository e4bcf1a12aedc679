"""Volume and file size queries.

Resolves a path to the root of the volume that contains it and reports how
much space is left there. Root resolution is platform specific and lives in a
resolver strategy picked once at import time:

- ``DriveLetterResolver`` for drive-letter systems (``C:/``)
- ``MountPointResolver`` for POSIX systems (nearest mount point)

Queries are never cached. Failures are reported as sentinels rather than
exceptions: ``0`` for unknown free space, ``-1`` for a missing file.

Example:
    >>> from image_ops.storage import space
    >>> space.get_available_space("/media/usb/images")
    15032385536
"""

from __future__ import annotations

import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path

from image_ops.domain import StorageRoot
from image_ops.logging import LoggerFactory


log = LoggerFactory.for_storage()


def _default_root() -> str:
    return Path(os.path.abspath(os.sep)).anchor.replace("\\", "/") or "/"


class VolumeRootResolver(ABC):
    """Maps an arbitrary path to the root of its volume."""

    @abstractmethod
    def resolve(self, path: str) -> str:
        """Return the volume root for ``path``."""

    def measure(self, root: str) -> StorageRoot | None:
        """Return capacity for ``root``, or None when it is not usable."""
        try:
            usage = shutil.disk_usage(root)
        except OSError as exc:
            log.debug(f"Volume not ready: {root}: {exc}")
            return None
        return StorageRoot(path=root, total_bytes=usage.total, available_bytes=usage.free)


class DriveLetterResolver(VolumeRootResolver):
    """Drive letter plus separator, e.g. ``D:/``."""

    @staticmethod
    def _drive_of(path: str) -> str | None:
        if len(path) >= 2 and path[1] == ":" and path[0].isalpha():
            return path[:2] + "/"
        return None

    def resolve(self, path: str) -> str:
        normalized = path.replace("\\", "/")
        root = self._drive_of(normalized)
        if root:
            return root
        absolute = os.path.abspath(normalized or os.curdir).replace("\\", "/")
        root = self._drive_of(absolute)
        if root:
            return root
        return _default_root()


class MountPointResolver(VolumeRootResolver):
    """Nearest mount point at or above the path."""

    def resolve(self, path: str) -> str:
        if not path:
            return "/"
        current = Path(os.path.abspath(path))
        # Non-existent tails resolve through their closest existing ancestor.
        while not current.exists() and current != current.parent:
            current = current.parent
        while not os.path.ismount(current) and current != current.parent:
            current = current.parent
        return str(current) or "/"

    def measure(self, root: str) -> StorageRoot | None:
        try:
            stats = os.statvfs(root)
        except OSError as exc:
            log.debug(f"Volume not ready: {root}: {exc}")
            return None
        total_bytes = stats.f_frsize * stats.f_blocks
        free_bytes = stats.f_frsize * stats.f_bavail
        return StorageRoot(
            path=root, total_bytes=total_bytes, available_bytes=free_bytes
        )


def default_resolver() -> VolumeRootResolver:
    if os.name == "nt":
        return DriveLetterResolver()
    return MountPointResolver()


resolver: VolumeRootResolver = default_resolver()


def resolve_volume_root(path: str) -> str:
    return resolver.resolve(path)


def get_storage_root(path: str) -> StorageRoot | None:
    """Resolve and measure the volume holding ``path``.

    Returns None when the volume is missing, unmounted or not accessible.
    """
    root = resolver.resolve(path)
    if not os.path.isdir(root):
        log.debug(f"Volume root is invalid: {root}")
        return None
    return resolver.measure(root)


def get_available_space(path: str) -> int:
    """Available bytes on the volume holding ``path``; 0 when unknown."""
    storage_root = get_storage_root(path)
    if storage_root is None:
        return 0
    available = max(0, storage_root.available_bytes)
    log.debug(
        f"Available space on {storage_root.path}: {available} bytes "
        f"({storage_root.available_gb:.2f} GB)"
    )
    return available


def get_file_size(path: str) -> int:
    """Size of the file at ``path`` in bytes, or -1 if it does not exist."""
    if not path or not os.path.isfile(path):
        return -1
    try:
        return os.stat(path).st_size
    except OSError:
        return -1
