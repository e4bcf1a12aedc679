"""Background task execution with an event channel back to the owner.

Each accepted operation becomes one ``OperationTask`` running on a shared,
bounded thread pool. The task never touches orchestrator state: it posts
``TaskProgress`` events while it runs and exactly one ``TaskCompleted`` event
when it ends, and the owning context drains them with ``next_event``.

Events for one task arrive in the order they were produced, progress always
before completion. Events of different tasks may interleave.
"""

from __future__ import annotations

import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from image_ops.domain import OperationRequest, OperationResult
from image_ops.logging import get_logger, new_job_id

log = get_logger(source="tasks", tags=["tasks"])

ProgressCallback = Callable[..., None]
TaskWork = Callable[[ProgressCallback], OperationResult]


@dataclass
class OperationTask:
    """Handle for one accepted operation."""

    task_id: str
    request: OperationRequest
    future: Future | None = field(default=None, repr=False)

    @property
    def kind(self):
        return self.request.kind


@dataclass(frozen=True)
class TaskProgress:
    task: OperationTask
    values: tuple[Any, ...]


@dataclass(frozen=True)
class TaskCompleted:
    task: OperationTask
    result: OperationResult


TaskEvent = Union[TaskProgress, TaskCompleted]


class TaskRunner:
    """Thread pool plus the queue its tasks report through."""

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="image-ops"
        )
        self._events: queue.Queue[TaskEvent] = queue.Queue()
        self._active: dict[str, OperationTask] = {}
        self._lock = threading.Lock()

    def submit(self, request: OperationRequest, work: TaskWork) -> OperationTask:
        """Schedule ``work`` and return its handle.

        Raises:
            RuntimeError: If the runner has been shut down
        """
        task = OperationTask(task_id=new_job_id(request.kind.value), request=request)

        def progress(*values: Any) -> None:
            self._events.put(TaskProgress(task, values))

        def run() -> None:
            try:
                result = work(progress)
            except Exception as exc:
                log.exception(f"Task {task.task_id} raised: {exc}")
                result = OperationResult.failure(task.kind, str(exc) or type(exc).__name__)
            except BaseException as exc:
                # The completion event must still go out before unwinding.
                log.error(f"Task {task.task_id} interrupted: {exc!r}")
                self._events.put(
                    TaskCompleted(
                        task,
                        OperationResult.failure(
                            task.kind, f"Task interrupted: {type(exc).__name__}"
                        ),
                    )
                )
                raise
            self._events.put(TaskCompleted(task, result))

        with self._lock:
            task.future = self._executor.submit(run)
            self._active[task.task_id] = task
        log.debug(f"Scheduled task {task.task_id}")
        return task

    def next_event(self, timeout: float | None = 0) -> TaskEvent | None:
        """Pop the next event, waiting up to ``timeout`` seconds (None blocks)."""
        try:
            if timeout is not None and timeout <= 0:
                event = self._events.get_nowait()
            else:
                event = self._events.get(timeout=timeout)
        except queue.Empty:
            return None
        if isinstance(event, TaskCompleted):
            with self._lock:
                self._active.pop(event.task.task_id, None)
        return event

    @property
    def active_count(self) -> int:
        """Tasks whose completion has not been consumed yet."""
        with self._lock:
            return len(self._active)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
