"""Operation orchestrator.

Owns the lifecycle of every background file and image operation:

- single-flight copy (a second copy is rejected while one runs)
- copy progress aggregation and percentage
- translation of task events into state changes and notifications
- removal of a registered temporary directory once a copy ends

All state lives in one ``OperationState`` that only the orchestrator writes.
Start calls validate preconditions, schedule one task and return at once.
Task events are applied on the owning context by ``process_events``; that is
also where cleanup runs.

Usage:
    orchestrator = OperationOrchestrator()
    orchestrator.copy_succeeded.connect(lambda: print("done"))
    if orchestrator.start_copy(src, dst, cleanup_dir=tmp):
        orchestrator.wait_for_idle()
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

from image_ops.config import settings
from image_ops.domain import (
    CopyRequest,
    DeleteRequest,
    ImageRequest,
    OperationKind,
    OperationRequest,
    OperationResult,
    OperationState,
)
from image_ops.logging import LoggerFactory, ThrottledLogger
from image_ops.services.signals import Signal
from image_ops.services.tasks import (
    OperationTask,
    TaskCompleted,
    TaskProgress,
    TaskRunner,
    TaskWork,
)
from image_ops.services.worker import FileWorker, Worker
from image_ops.storage import space
from image_ops.storage.cleanup import cleanup_temp_directory
from image_ops.storage.exceptions import DestinationDirectoryError, OperationBusyError

log = LoggerFactory.for_orchestrator()

MAX_EVENTS_PER_CALL = 256

STATUS_ALREADY_COPYING = "Already copying..."
STATUS_ALREADY_PROCESSING = "Already processing..."
STATUS_STARTING_COPY = "Starting copy..."
STATUS_STARTING_DELETE = "Starting delete..."
STATUS_STARTING_VALIDATION = "Starting image validation..."
STATUS_EXTRACTING_INFO = "Extracting image info..."
STATUS_PROCESSING_IMAGE = "Processing image info and validation..."


class OperationOrchestrator:
    """Starts operations on background tasks and publishes their outcome."""

    def __init__(self, worker: Worker | None = None, runner: TaskRunner | None = None):
        self.state = OperationState()
        self.worker: Worker = worker or FileWorker()
        self.runner = runner or TaskRunner(
            max_workers=settings.get_int(
                "max_concurrent_tasks", settings.DEFAULT_MAX_CONCURRENT_TASKS
            )
        )
        self._lock = threading.RLock()
        self._progress_log = ThrottledLogger(
            log,
            settings.get_float(
                "progress_log_interval_seconds", settings.DEFAULT_PROGRESS_LOG_INTERVAL
            ),
        )

        # State notifications
        self.is_copying_changed = Signal("is_copying_changed")
        self.status_changed = Signal("status_changed")
        self.progress_changed = Signal("progress_changed")
        self.total_size_changed = Signal("total_size_changed")

        # Terminal notifications
        self.copy_succeeded = Signal("copy_succeeded")
        self.copy_failed = Signal("copy_failed")
        self.delete_succeeded = Signal("delete_succeeded")
        self.delete_failed = Signal("delete_failed")
        self.validation_succeeded = Signal("validation_succeeded")
        self.validation_failed = Signal("validation_failed")
        self.image_info_extracted = Signal("image_info_extracted")
        self.image_info_and_validation_completed = Signal(
            "image_info_and_validation_completed"
        )

        # Shared by validation and extract+validate
        self.validation_progress = Signal("validation_progress")

        self._completion_handlers = {
            OperationKind.COPY: self._on_copy_finished,
            OperationKind.DELETE: self._on_delete_finished,
            OperationKind.VALIDATE: self._on_validation_finished,
            OperationKind.EXTRACT_INFO: self._on_image_info_extracted,
            OperationKind.EXTRACT_AND_VALIDATE: self._on_image_info_and_validation,
        }

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_copying(self) -> bool:
        return self.state.is_copying

    @property
    def status(self) -> str:
        return self.state.status

    @property
    def total_size(self) -> int:
        return self.state.total_size

    def progress_percent(self) -> int:
        return self.state.progress_percent

    def get_file_size(self, path: str) -> int:
        return space.get_file_size(path)

    def get_available_space(self, path: str) -> int:
        return space.get_available_space(path)

    # ------------------------------------------------------------------
    # Start operations
    # ------------------------------------------------------------------

    def start_copy(self, source: str, destination: str, cleanup_dir: str = "") -> bool:
        """Copy ``source`` to ``destination`` in the background.

        ``cleanup_dir``, when given, is removed after the copy ends whatever
        its outcome. Returns True once the copy is scheduled.
        """
        with self._lock:
            try:
                self._ensure_not_copying(STATUS_ALREADY_COPYING)
            except OperationBusyError as exc:
                self._set_status(exc.status)
                return False

            try:
                self._ensure_parent_directory(destination)
            except DestinationDirectoryError as exc:
                log.error(f"{exc} ({exc.directory})")
                self._set_status(str(exc))
                self.copy_failed.emit(self.state.status)
                return False

            state = self.state
            state.pending_cleanup_dir = cleanup_dir or ""
            state.is_copying = True
            state.status = STATUS_STARTING_COPY
            state.copied_size = 0
            state.total_size = 0
            self.is_copying_changed.emit(True)
            self.status_changed.emit(state.status)
            self.progress_changed.emit(0)
            self.total_size_changed.emit(0)

            request = CopyRequest(source, destination, cleanup_dir or "")
            task = self._schedule(
                request,
                lambda progress: self.worker.copy(source, destination, progress),
            )
            return task is not None

    def start_delete(self, path: str) -> bool:
        """Delete ``path`` in the background. Not blocked by a running copy."""
        with self._lock:
            self.state.deleting_path = path
            self._set_status(STATUS_STARTING_DELETE)
            task = self._schedule(
                DeleteRequest(path), lambda progress: self.worker.delete(path)
            )
            return task is not None

    def start_image_validation(self, path: str) -> bool:
        """Validate the image archive at ``path`` in the background."""
        with self._lock:
            self._set_status(STATUS_STARTING_VALIDATION)
            self.validation_progress.emit("Starting validation", 0)
            task = self._schedule(
                ImageRequest(path, OperationKind.VALIDATE),
                lambda progress: self.worker.validate_image(path, progress),
            )
            return task is not None

    def start_image_info_extraction(self, path: str) -> bool:
        """Read image name and Android release of ``path`` in the background.

        Rejected while a copy or another image inspection is running.
        """
        with self._lock:
            if not self._begin_image_processing(STATUS_EXTRACTING_INFO):
                return False
            task = self._schedule(
                ImageRequest(path, OperationKind.EXTRACT_INFO),
                lambda progress: self.worker.extract_image_info(path),
            )
            return task is not None

    def start_image_info_and_validation(self, path: str) -> bool:
        """Extract image info, then validate, as one background task."""
        with self._lock:
            if not self._begin_image_processing(STATUS_PROCESSING_IMAGE):
                return False
            self.validation_progress.emit("Starting processing", 0)
            task = self._schedule(
                ImageRequest(path, OperationKind.EXTRACT_AND_VALIDATE),
                lambda progress: self.worker.extract_and_validate(path, progress),
            )
            return task is not None

    # ------------------------------------------------------------------
    # Event loop integration
    # ------------------------------------------------------------------

    def process_events(
        self, timeout: float | None = 0, max_events: int = MAX_EVENTS_PER_CALL
    ) -> int:
        """Apply pending task events on the calling (owning) context.

        Waits up to ``timeout`` seconds for the first event, then drains what
        else is queued, at most ``max_events`` in total. Events beyond that stay
        queued for the next call. Returns the number of events handled.
        """
        handled = 0
        event = self.runner.next_event(timeout)
        while event is not None:
            with self._lock:
                if isinstance(event, TaskProgress):
                    self._on_progress(event.task, event.values)
                elif isinstance(event, TaskCompleted):
                    self._completion_handlers[event.task.kind](event.task, event.result)
            handled += 1
            if handled >= max_events:
                break
            event = self.runner.next_event(0)
        return handled

    def wait_for_idle(self, timeout: float | None = None, poll: float = 0.05) -> bool:
        """Process events until no task is active.

        Returns False if ``timeout`` seconds pass first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while self.runner.active_count:
            if deadline is not None and time.monotonic() >= deadline:
                return False
            self.process_events(poll)
        self.process_events(0)
        return True

    def shutdown(self, wait: bool = True) -> None:
        """Join the worker pool, then deliver any remaining events."""
        self.runner.shutdown(wait=wait)
        if wait:
            while self.process_events(0):
                pass

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_status(self, status: str) -> None:
        self.state.status = status
        self.status_changed.emit(status)

    def _ensure_not_copying(self, status: str) -> None:
        if self.state.is_copying:
            raise OperationBusyError(status, active="copy")

    def _ensure_parent_directory(self, destination: str) -> None:
        parent = Path(destination).parent
        if parent.is_dir():
            return
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DestinationDirectoryError(parent, exc.strerror or str(exc)) from exc

    def _begin_image_processing(self, status: str) -> bool:
        try:
            self._ensure_not_copying(STATUS_ALREADY_PROCESSING)
            if self.state.is_processing_image:
                raise OperationBusyError(STATUS_ALREADY_PROCESSING, active="image")
        except OperationBusyError as exc:
            self._set_status(exc.status)
            return False
        self.state.is_processing_image = True
        self._set_status(status)
        return True

    def _schedule(
        self, request: OperationRequest, work: TaskWork
    ) -> OperationTask | None:
        try:
            task = self.runner.submit(request, work)
        except RuntimeError as exc:
            log.error(f"Could not schedule {request.kind.value}: {exc}")
            self._fail_unscheduled(request, f"Failed to schedule task: {exc}")
            return None
        log.info(f"Started {task.task_id}")
        return task

    def _fail_unscheduled(self, request: OperationRequest, message: str) -> None:
        # No task will ever report for this request; close it out as failed.
        task = OperationTask(task_id=f"{request.kind.value}-unscheduled", request=request)
        result = OperationResult.failure(request.kind, message)
        self._completion_handlers[request.kind](task, result)

    def _on_progress(self, task: OperationTask, values: tuple) -> None:
        if task.kind is OperationKind.COPY:
            copied, total = values
            self._on_copy_progress(task, int(copied), int(total))
        elif task.kind in (OperationKind.VALIDATE, OperationKind.EXTRACT_AND_VALIDATE):
            label, percent = values
            self.validation_progress.emit(label, int(percent))
        else:
            log.debug(f"Ignoring progress from {task.task_id}: {values}")

    def _on_copy_progress(self, task: OperationTask, copied: int, total: int) -> None:
        state = self.state
        if state.total_size != total:
            state.total_size = total
            self.total_size_changed.emit(total)
        if total > 0:
            copied = min(max(copied, state.copied_size, 0), total)
        state.copied_size = copied
        percent = state.progress_percent
        self.progress_changed.emit(percent)
        self._progress_log.debug(
            task.task_id, f"{task.task_id}: {copied}/{total} bytes ({percent}%)"
        )

    def _on_copy_finished(self, task: OperationTask, result: OperationResult) -> None:
        state = self.state
        state.is_copying = False
        state.status = result.message
        self.is_copying_changed.emit(False)
        self.status_changed.emit(result.message)
        self._progress_log.forget(task.task_id)

        if state.pending_cleanup_dir:
            cleanup_dir = state.pending_cleanup_dir
            log.debug(f"Cleaning up temporary directory after copy: {cleanup_dir}")
            try:
                report = cleanup_temp_directory(cleanup_dir)
                if report.failures:
                    log.warning(
                        f"Cleanup of {cleanup_dir} left {len(report.failures)} failure(s)"
                    )
            finally:
                state.pending_cleanup_dir = ""

        if result.success:
            log.info(f"{task.task_id} succeeded: {result.message}")
            self.copy_succeeded.emit()
        else:
            log.error(f"{task.task_id} failed: {result.message}")
            self.copy_failed.emit(result.message)

    def _on_delete_finished(self, task: OperationTask, result: OperationResult) -> None:
        self._set_status(result.message)
        if result.success:
            log.info(f"{task.task_id} succeeded: {task.request.path}")
            self.delete_succeeded.emit(task.request.path)
        else:
            log.error(f"{task.task_id} failed: {result.message}")
            self.delete_failed.emit(result.message)

    def _on_validation_finished(
        self, task: OperationTask, result: OperationResult
    ) -> None:
        self._set_status(result.message)
        if result.success:
            log.info(f"{task.task_id} succeeded: {result.archive_path}")
            self.validation_succeeded.emit(result.image_name, result.archive_path)
        else:
            log.error(f"{task.task_id} failed: {result.message}")
            self.validation_failed.emit(result.message)

    def _on_image_info_extracted(
        self, task: OperationTask, result: OperationResult
    ) -> None:
        self.state.is_processing_image = False
        self._set_status(
            "Image info extracted successfully"
            if result.success
            else "Failed to extract image info"
        )
        error_message = "" if result.success else result.message
        self.image_info_extracted.emit(
            result.success, result.image_name, result.android_version, error_message
        )

    def _on_image_info_and_validation(
        self, task: OperationTask, result: OperationResult
    ) -> None:
        self.state.is_processing_image = False
        self._set_status(
            "Image processing completed successfully"
            if result.success
            else "Failed to process image"
        )
        self.image_info_and_validation_completed.emit(
            result.success,
            result.message,
            result.image_name,
            result.android_version,
            result.archive_path,
        )
