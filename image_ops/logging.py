from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger
    from image_ops.app.context import AppContext

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "IMAGE_OPS_LOG_DIR",
        Path.home() / ".local" / "state" / "image-ops" / "logs",
    )
)

PROGRESS_TAG = "progress"


def _should_log_progress(record) -> bool:
    """Per-chunk progress records are TRACE noise unless they carry a problem."""
    tags = record["extra"].get("tags", [])

    if record["level"].no >= logger.level("WARNING").no:
        return True

    if PROGRESS_TAG in tags:
        return record["level"].no <= logger.level("TRACE").no

    return True


def setup_logging(
    app_context: AppContext | None,
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
    ui_min_level: str | None = None,
) -> Logger:
    """
    Setup logging sinks for the orchestrator and its workers.

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when debug or trace is enabled (3 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    Args:
        app_context: Application context receiving log entries for the UI
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (includes per-chunk progress)
        log_dir: Custom log directory (defaults to ~/.local/state/image-ops/logs)
        ui_min_level: Minimum log level forwarded to the app context
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    logger.add(
        sys.stderr,
        level=console_level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        filter=_should_log_progress,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <12}</cyan> | "
            "<blue>{extra[job_id]: <21}</blue> | "
            "{message}"
        ),
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <12} | "
            "{extra[job_id]: <21} | "
            "{message}"
        ),
    )

    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="TRACE" if trace else "DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            enqueue=True,
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <12} | "
                "{extra[job_id]: <21} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        serialize=True,
        format="{message}",
    )

    if app_context is not None:
        if ui_min_level is None:
            resolved_ui_level = "TRACE" if trace else "DEBUG" if debug else "INFO"
        else:
            resolved_ui_level = ui_min_level.upper()

        def _app_context_sink(message) -> None:
            record = message.record
            if record["level"].no >= logger.level(resolved_ui_level).no:
                app_context.add_log(
                    record["message"],
                    level=record["level"].name.lower(),
                    tags=record["extra"].get("tags", []),
                    timestamp=record["time"],
                    source=record["extra"].get("source"),
                )

        logger.add(_app_context_sink, enqueue=True, filter=_should_log_progress)

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking operations
        tags: Tags for filtering (e.g., ["copy", "storage"])
        source: Source component (e.g., "copy", "cleanup")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


def new_job_id(operation: str) -> str:
    return f"{operation}-{uuid.uuid4().hex[:8]}"


@contextmanager
def operation_context(operation: str, *, job_id: str | None = None, **details):
    """
    Track a worker task with automatic timing.

    Logs start, completion and failure with duration. Exceptions are logged
    and re-raised.

    Example:
        with operation_context("copy", source=src, destination=dst) as log:
            log.debug("Scanning source tree")
    """
    job_id = job_id or new_job_id(operation)

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} started", **details)

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed", duration_seconds=round(duration, 2)
            )
        except Exception as e:
            duration = time.time() - start_time
            log.error(
                f"{operation.capitalize()} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


class LoggerFactory:
    """
    Factory for domain-specific loggers with source and tags pre-bound.
    """

    @staticmethod
    def for_orchestrator() -> Logger:
        """Logger for operation lifecycle and notifications."""
        return logger.bind(source="orchestrator", tags=["orchestrator"])

    @staticmethod
    def for_copy(job_id: str | None = None) -> Logger:
        """Logger for copy operations."""
        if job_id is None:
            job_id = new_job_id("copy")
        return logger.bind(job_id=job_id, source="copy", tags=["copy", "storage"])

    @staticmethod
    def for_delete(job_id: str | None = None) -> Logger:
        """Logger for delete operations."""
        if job_id is None:
            job_id = new_job_id("delete")
        return logger.bind(job_id=job_id, source="delete", tags=["delete", "storage"])

    @staticmethod
    def for_image(job_id: str | None = None) -> Logger:
        """Logger for image validation and inspection."""
        if job_id is None:
            job_id = new_job_id("image")
        return logger.bind(job_id=job_id, source="image", tags=["image"])

    @staticmethod
    def for_storage() -> Logger:
        """Logger for volume and file size queries."""
        return logger.bind(source="storage", tags=["storage"])

    @staticmethod
    def for_cleanup() -> Logger:
        """Logger for temporary directory cleanup."""
        return logger.bind(source="cleanup", tags=["cleanup", "storage"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for startup, shutdown and configuration."""
        return logger.bind(source="system", tags=["system"])


class ThrottledLogger:
    """
    Logger wrapper that throttles high-frequency log events.

    Copy progress arrives once per chunk; this keeps one line per interval.
    """

    def __init__(self, log: Logger, interval_seconds: float = 5.0):
        self.log = log
        self.interval = interval_seconds
        self.last_log_time: dict[str, float] = {}

    def debug(self, key: str, message: str, **kwargs) -> None:
        self._throttled_log("DEBUG", key, message, **kwargs)

    def info(self, key: str, message: str, **kwargs) -> None:
        self._throttled_log("INFO", key, message, **kwargs)

    def forget(self, key: str) -> None:
        """Drop throttle state for a finished job."""
        self.last_log_time.pop(key, None)

    def _throttled_log(self, level: str, key: str, message: str, **kwargs) -> None:
        now = time.time()
        last_time = self.last_log_time.get(key, 0)

        if now - last_time >= self.interval:
            log_method = getattr(self.log, level.lower())
            log_method(message, **kwargs)
            self.last_log_time[key] = now
