"""
Pytest configuration and shared fixtures for image-ops tests.

This module provides common fixtures and utilities used across all test modules.
"""

import io
import tarfile
import threading
import zipfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from image_ops.domain import OperationKind, OperationResult
from image_ops.services.orchestrator import OperationOrchestrator
from image_ops.services.tasks import TaskRunner


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def temp_settings_file(tmp_path) -> Path:
    """
    Fixture providing a temporary settings file path.

    Args:
        tmp_path: pytest's built-in temporary directory fixture.

    Returns:
        Path to a temporary settings file.
    """
    settings_dir = tmp_path / ".config" / "image-ops"
    settings_dir.mkdir(parents=True, exist_ok=True)
    return settings_dir / "settings.json"


@pytest.fixture
def sample_settings_data() -> Dict[str, Any]:
    """Fixture providing sample settings data."""
    return {
        "copy_chunk_size": 4096,
        "max_concurrent_tasks": 2,
        "progress_log_interval_seconds": 1.0,
        "work_dir": "/tmp/image-ops-test",
    }


# ==============================================================================
# Image Archive Fixtures
# ==============================================================================

BUILD_PROP = (
    "# begin build properties\n"
    "ro.build.id=TQ3A.230901.001\n"
    "ro.build.version.release=13\n"
    "ro.build.version.sdk=33\n"
)


def _tar_bytes(files: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


@pytest.fixture
def image_files() -> Dict[str, bytes]:
    """Partition images plus a build.prop, as found in a firmware tar."""
    return {
        "boot.img": b"\x01" * 4096,
        "system.img": b"\x02" * 20000,
        "system/build.prop": BUILD_PROP.encode(),
    }


@pytest.fixture
def make_tar(tmp_path) -> Callable[..., Path]:
    """Factory writing a plain .tar archive."""

    def _make(name: str, files: Dict[str, bytes]) -> Path:
        path = tmp_path / name
        path.write_bytes(_tar_bytes(files))
        return path

    return _make


@pytest.fixture
def make_tgz(tmp_path) -> Callable[..., Path]:
    """Factory writing a gzip-compressed tar archive."""

    def _make(name: str, files: Dict[str, bytes]) -> Path:
        path = tmp_path / name
        with tarfile.open(path, mode="w:gz") as tar:
            for member, data in files.items():
                info = tarfile.TarInfo(member)
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
        return path

    return _make


@pytest.fixture
def make_zip(tmp_path) -> Callable[..., Path]:
    """Factory writing a .zip that wraps an image tar (and optional extras)."""

    def _make(
        name: str,
        files: Optional[Dict[str, bytes]] = None,
        extras: Optional[Dict[str, bytes]] = None,
        tar_name: str = "image.tar",
    ) -> Path:
        path = tmp_path / name
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            if files is not None:
                zf.writestr(tar_name, _tar_bytes(files))
            for member, data in (extras or {}).items():
                zf.writestr(member, data)
        return path

    return _make


# ==============================================================================
# Orchestrator Fixtures
# ==============================================================================


class FakeWorker:
    """Scripted worker whose tasks block until released.

    Each call records its arguments, replays the scripted progress values and
    returns the scripted result for its kind.
    """

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.progress: Dict[OperationKind, List[tuple]] = {}
        self.results: Dict[OperationKind, OperationResult] = {}
        self.release = threading.Event()
        self.release.set()
        self.started = threading.Event()

    def hold(self) -> None:
        self.release.clear()

    def _run(self, kind, progress, *args):
        self.calls.append((kind, *args))
        for values in self.progress.get(kind, []):
            if progress is not None:
                progress(*values)
        self.started.set()
        if not self.release.wait(timeout=10):
            raise RuntimeError("worker was never released")
        result = self.results.get(kind)
        if result is None:
            result = OperationResult(kind, True, f"{kind.value} ok")
        return result

    def copy(self, source, destination, progress):
        return self._run(OperationKind.COPY, progress, source, destination)

    def delete(self, path):
        return self._run(OperationKind.DELETE, None, path)

    def validate_image(self, path, progress):
        return self._run(OperationKind.VALIDATE, progress, path)

    def extract_image_info(self, path):
        return self._run(OperationKind.EXTRACT_INFO, None, path)

    def extract_and_validate(self, path, progress):
        return self._run(OperationKind.EXTRACT_AND_VALIDATE, progress, path)


class SignalRecorder:
    """Collects every emission of the orchestrator's signals."""

    NAMES = (
        "is_copying_changed",
        "status_changed",
        "progress_changed",
        "total_size_changed",
        "copy_succeeded",
        "copy_failed",
        "delete_succeeded",
        "delete_failed",
        "validation_succeeded",
        "validation_failed",
        "validation_progress",
        "image_info_extracted",
        "image_info_and_validation_completed",
    )

    def __init__(self, orchestrator: OperationOrchestrator) -> None:
        self.events: List[tuple] = []
        for name in self.NAMES:
            getattr(orchestrator, name).connect(self._recorder(name))

    def _recorder(self, name: str):
        def record(*args):
            self.events.append((name, *args))

        return record

    def of(self, name: str) -> List[tuple]:
        return [event[1:] for event in self.events if event[0] == name]


@pytest.fixture
def fake_worker() -> FakeWorker:
    return FakeWorker()


@pytest.fixture
def orchestrator(fake_worker):
    """Orchestrator wired to the fake worker and a real thread pool."""
    ops = OperationOrchestrator(worker=fake_worker, runner=TaskRunner(max_workers=4))
    yield ops
    fake_worker.release.set()
    ops.shutdown(wait=True)


@pytest.fixture
def recorder(orchestrator) -> SignalRecorder:
    return SignalRecorder(orchestrator)
