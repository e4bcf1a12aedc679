"""Byte-level copy and delete routines.

These run on a worker thread. Progress is reported as ``(copied, total)`` byte
counts after every chunk, with ``copied`` never decreasing.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Callable, Iterator

from image_ops.config import settings
from image_ops.logging import LoggerFactory
from image_ops.storage.exceptions import (
    CopyOperationError,
    DeleteOperationError,
    SourceNotFoundError,
)

log = LoggerFactory.for_storage()

CopyProgress = Callable[[int, int], None]


def _iter_tree_files(
    src: Path, strict: bool = False
) -> Iterator[tuple[Path, int]]:
    """Yield ``(path, size)`` for every file below ``src``.

    With ``strict`` an unreadable directory or file raises ``OSError``;
    otherwise it is logged and skipped.
    """

    def on_walk_error(error: OSError) -> None:
        if strict:
            raise error
        log.warning(f"Could not list directory {error.filename}: {error}")

    for root, _, files in os.walk(src, onerror=on_walk_error):
        for name in sorted(files):
            file_path = Path(root) / name
            try:
                size = file_path.stat().st_size
            except OSError as e:
                if strict:
                    raise
                log.warning(f"Could not stat file {file_path}: {e}")
                continue
            yield file_path, size


def _ensure_distinct(src: Path, dest: Path) -> None:
    """Refuse copies that would overwrite their own source."""
    if src.is_dir():
        source_root = src.resolve()
        target = dest.resolve()
        if target == source_root or target.is_relative_to(source_root):
            raise CopyOperationError(
                f"Destination is inside the source directory: {dest}",
                str(src),
                str(dest),
            )
    elif dest.exists() and os.path.samefile(src, dest):
        raise CopyOperationError(
            f"Source and destination are the same file: {dest}", str(src), str(dest)
        )


def measure_source(src: Path) -> int:
    """Total bytes that copying ``src`` will write."""
    if src.is_dir():
        return sum(size for _, size in _iter_tree_files(src))
    return src.stat().st_size


class _ProgressTracker:
    def __init__(self, total: int, callback: CopyProgress | None):
        self.total = total
        self.copied = 0
        self.callback = callback

    def advance(self, count: int) -> None:
        self.copied = min(self.copied + count, self.total)
        if self.callback:
            self.callback(self.copied, self.total)


def _copy_file_chunks(
    src: Path, dest: Path, tracker: _ProgressTracker, chunk_size: int
) -> None:
    with open(src, "rb") as src_file, open(dest, "wb") as dest_file:
        while True:
            chunk = src_file.read(chunk_size)
            if not chunk:
                break
            dest_file.write(chunk)
            tracker.advance(len(chunk))
    shutil.copystat(src, dest)


def copy_path(
    source: str | os.PathLike,
    destination: str | os.PathLike,
    progress_callback: CopyProgress | None = None,
    chunk_size: int | None = None,
) -> int:
    """Copy a file or a directory tree to ``destination``.

    Directory sources are merged into an existing destination directory.

    Returns:
        Number of bytes written.

    Raises:
        SourceNotFoundError: If ``source`` does not exist
        CopyOperationError: If reading or writing fails, or the destination
            is the source itself or lies inside the source tree
    """
    src = Path(source)
    dest = Path(destination)
    if not src.exists():
        raise SourceNotFoundError(src)
    if chunk_size is None:
        chunk_size = settings.get_int("copy_chunk_size", settings.DEFAULT_CHUNK_SIZE)

    try:
        if not src.is_dir() and dest.is_dir():
            dest = dest / src.name
        _ensure_distinct(src, dest)

        total = measure_source(src)
        tracker = _ProgressTracker(total, progress_callback)
        if progress_callback:
            progress_callback(0, total)

        if src.is_dir():
            if dest.exists() and not dest.is_dir():
                raise CopyOperationError(
                    f"Destination is not a directory: {dest}", str(src), str(dest)
                )
            dest.mkdir(parents=True, exist_ok=True)
            for file_path, _ in list(_iter_tree_files(src, strict=True)):
                dest_file = dest / file_path.relative_to(src)
                dest_file.parent.mkdir(parents=True, exist_ok=True)
                _copy_file_chunks(file_path, dest_file, tracker, chunk_size)
        else:
            if dest.exists():
                log.warning(f"Destination file exists, will be overwritten: {dest}")
            _copy_file_chunks(src, dest, tracker, chunk_size)
    except OSError as e:
        raise CopyOperationError(
            f"Failed to copy {src} to {dest}: {e}", str(src), str(dest)
        ) from e

    return tracker.copied


def delete_path(path: str | os.PathLike) -> None:
    """Delete a file, symlink or directory tree.

    Raises:
        SourceNotFoundError: If nothing exists at ``path``
        DeleteOperationError: If removal fails
    """
    target = Path(path)
    if not target.exists() and not target.is_symlink():
        raise SourceNotFoundError(target)
    try:
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        else:
            target.unlink()
    except OSError as e:
        raise DeleteOperationError(f"Failed to delete {target}: {e}", str(target)) from e
