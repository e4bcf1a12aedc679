"""Best-effort removal of temporary directories.

Used after a copy that was fed from an unpacked image archive. Removal keeps
going past individual failures and never raises; every failure is recorded in
the returned ``CleanupReport`` and logged.

Order of removal:
    1. regular files directly inside the directory
    2. each subdirectory, recursively
    3. the directory tree itself
    4. if that failed, a single ``rmdir`` of the directory from its parent
"""

from __future__ import annotations

import os
import shutil
import sys
from pathlib import Path

from image_ops.domain import CleanupReport
from image_ops.logging import LoggerFactory


log = LoggerFactory.for_cleanup()


def _remove_tree(path: Path, report: CleanupReport) -> bool:
    """Remove ``path`` with ``shutil.rmtree``, recording failures instead of stopping."""
    failures_before = len(report.failures)

    def record(func, target, exc: BaseException) -> None:
        if isinstance(exc, FileNotFoundError):
            return
        kind = "directory" if func in (os.rmdir, os.scandir, os.open) else "file"
        report.record(f"Failed to remove {kind}: {target}: {exc}")

    def record_exc_info(func, target, exc_info) -> None:
        record(func, target, exc_info[1])

    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=record)
    else:
        shutil.rmtree(path, onerror=record_exc_info)
    return len(report.failures) == failures_before


def cleanup_temp_directory(temp_dir: str | os.PathLike) -> CleanupReport:
    """Remove ``temp_dir`` and everything below it.

    A missing directory is a no-op. The report lists every failure; callers
    only use it for diagnostics.
    """
    path = Path(temp_dir)
    report = CleanupReport(path=str(path))

    if not path.is_dir() or path.is_symlink():
        log.debug(f"Temporary directory does not exist: {path}")
        return report

    try:
        entries = list(os.scandir(path))
    except OSError as exc:
        entries = []
        report.record(f"Failed to list directory: {path}: {exc}")

    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            continue
        try:
            os.unlink(entry.path)
        except OSError as exc:
            report.record(f"Failed to remove file: {entry.path}: {exc}")

    for entry in entries:
        if not entry.is_dir(follow_symlinks=False):
            continue
        if not _remove_tree(Path(entry.path), report):
            log.debug(f"Failed to remove subdirectory: {entry.path}")

    if _remove_tree(path, report) and not path.exists():
        report.removed = True
        log.info(f"Successfully cleaned up temporary directory: {path}")
        return report

    log.warning(f"Failed to remove temporary directory: {path}")
    try:
        os.rmdir(path.parent / path.name)
    except OSError as exc:
        report.record(f"Force removal failed: {path}: {exc}")
        log.warning(f"Force removal also failed for: {path}")
    else:
        report.removed = True
        report.forced = True
        log.info(f"Force removal succeeded for: {path}")

    for failure in report.failures:
        log.debug(failure)
    return report
