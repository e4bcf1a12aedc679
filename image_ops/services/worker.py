"""Worker contract and the default filesystem worker.

A worker runs one task on a background thread. Progress goes through the
callback it is handed; the returned ``OperationResult`` is the single terminal
event for the task.

Contract:
    copy(source, destination, progress)     progress(copied, total)
    delete(path)                            no progress
    validate_image(path, progress)          progress(label, percent)
    extract_image_info(path)                no progress
    extract_and_validate(path, progress)    progress(label, percent)
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional, Protocol

from image_ops.domain import OperationKind, OperationResult
from image_ops.logging import LoggerFactory, new_job_id, operation_context
from image_ops.storage import image_archive, transfer
from image_ops.storage.cleanup import cleanup_temp_directory
from image_ops.storage.exceptions import ImageOpsError

CopyProgress = Callable[[int, int], None]
LabelProgress = Callable[[str, int], None]


class Worker(Protocol):
    def copy(
        self, source: str, destination: str, progress: CopyProgress
    ) -> OperationResult: ...

    def delete(self, path: str) -> OperationResult: ...

    def validate_image(self, path: str, progress: LabelProgress) -> OperationResult: ...

    def extract_image_info(self, path: str) -> OperationResult: ...

    def extract_and_validate(
        self, path: str, progress: LabelProgress
    ) -> OperationResult: ...


class FileWorker:
    """Worker backed by the local filesystem."""

    def __init__(self, work_dir: Optional[Path] = None):
        self.work_dir = work_dir

    def copy(self, source, destination, progress):
        kind = OperationKind.COPY
        job_id = new_job_id(kind.value)
        log = LoggerFactory.for_copy(job_id)
        try:
            with operation_context(
                "copy", job_id=job_id, source_path=source, destination_path=destination
            ):
                copied = transfer.copy_path(source, destination, progress)
                log.debug(f"Wrote {copied} bytes to {destination}")
        except ImageOpsError as exc:
            return OperationResult.failure(kind, str(exc))
        return OperationResult(kind, True, f"Copy completed ({copied} bytes)")

    def delete(self, path):
        kind = OperationKind.DELETE
        job_id = new_job_id(kind.value)
        log = LoggerFactory.for_delete(job_id)
        try:
            with operation_context("delete", job_id=job_id, path=path):
                transfer.delete_path(path)
                log.debug(f"Removed {path}")
        except ImageOpsError as exc:
            return OperationResult.failure(kind, str(exc))
        return OperationResult(kind, True, f"Deleted {Path(path).name}")

    def _validate(self, path: str, progress: LabelProgress, start: int, span: int):
        def scaled(label: str, percent: int) -> None:
            progress(label, start + percent * span // 100)

        progress("Unpacking image", start)
        tar_path = image_archive.unpack_image_tar(path, self.work_dir)
        try:
            count = image_archive.verify_image_tar(tar_path, scaled)
        except ImageOpsError:
            if tar_path != Path(path):
                cleanup_temp_directory(tar_path.parent)
            raise
        return tar_path, count

    def validate_image(self, path, progress):
        kind = OperationKind.VALIDATE
        job_id = new_job_id(kind.value)
        log = LoggerFactory.for_image(job_id)
        try:
            with operation_context("validate", job_id=job_id, path=path):
                tar_path, count = self._validate(path, progress, 0, 100)
                log.debug(f"Verified {count} image files in {tar_path}")
        except ImageOpsError as exc:
            return OperationResult.failure(kind, str(exc))
        progress("Validation complete", 100)
        return OperationResult(
            kind,
            True,
            "Image validation passed",
            image_name=image_archive.image_name_for(Path(path)),
            archive_path=str(tar_path),
        )

    def extract_image_info(self, path):
        kind = OperationKind.EXTRACT_INFO
        job_id = new_job_id(kind.value)
        log = LoggerFactory.for_image(job_id)
        try:
            with operation_context("extract-info", job_id=job_id, path=path):
                info = image_archive.read_image_info(path)
                log.debug(f"{info.image_name}: Android {info.android_version}")
        except ImageOpsError as exc:
            return OperationResult.failure(kind, str(exc))
        return OperationResult(
            kind,
            True,
            image_name=info.image_name,
            android_version=info.android_version,
        )

    def extract_and_validate(self, path, progress):
        kind = OperationKind.EXTRACT_AND_VALIDATE
        job_id = new_job_id(kind.value)
        log = LoggerFactory.for_image(job_id)
        try:
            with operation_context("extract-and-validate", job_id=job_id, path=path):
                progress("Reading image info", 0)
                info = image_archive.read_image_info(path)
                progress("Image info read", 10)
                tar_path, count = self._validate(path, progress, 10, 90)
                log.debug(
                    f"{info.image_name}: Android {info.android_version}, "
                    f"{count} image files verified"
                )
        except ImageOpsError as exc:
            return OperationResult.failure(kind, str(exc))
        progress("Processing complete", 100)
        return OperationResult(
            kind,
            True,
            "Image info extracted and validated",
            image_name=info.image_name,
            android_version=info.android_version,
            archive_path=str(tar_path),
        )
