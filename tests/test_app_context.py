"""Tests for app/context.py module."""

from datetime import datetime

from image_ops import logging as logging_module
from image_ops.app.context import AppContext, LogEntry, create_app_context
from image_ops.services.orchestrator import OperationOrchestrator


class TestAppContext:
    """Tests for AppContext log buffer."""

    def test_add_log_appends_entry(self):
        """Test a log entry is stored with its metadata."""
        context = AppContext()
        context.add_log("Copy started", level="info", tags=["copy"], source="copy")

        entry = context.log_buffer[-1]
        assert isinstance(entry, LogEntry)
        assert entry.message == "Copy started"
        assert entry.tags == ["copy"]
        assert entry.source == "copy"

    def test_add_log_ignores_empty_message(self):
        """Test empty messages are dropped."""
        context = AppContext()
        context.add_log("")
        assert len(context.log_buffer) == 0

    def test_buffer_is_bounded(self):
        """Test old entries are discarded past the buffer size."""
        context = AppContext()
        for index in range(600):
            context.add_log(f"line {index}")

        assert len(context.log_buffer) == 500
        assert context.log_buffer[0].message == "line 100"

    def test_recent_logs(self):
        """Test recent_logs returns the newest entries as dicts."""
        context = AppContext()
        stamp = datetime(2024, 1, 2, 3, 4, 5)
        for index in range(5):
            context.add_log(f"line {index}", timestamp=stamp)

        recent = context.recent_logs(limit=2)

        assert [item["message"] for item in recent] == ["line 3", "line 4"]
        assert recent[0]["timestamp"] == "2024-01-02T03:04:05"


class TestCreateAppContext:
    """Tests for create_app_context()."""

    def test_wires_logging_and_orchestrator(self, tmp_path, fake_worker):
        """Test the context receives logs and holds the orchestrator."""
        orchestrator = OperationOrchestrator(worker=fake_worker)
        try:
            context = create_app_context(
                log_dir=tmp_path / "logs", orchestrator=orchestrator
            )
            logging_module.logger.complete()

            assert context.orchestrator is orchestrator
            assert any(
                entry.message == "Operation orchestrator ready"
                for entry in context.log_buffer
            )
        finally:
            orchestrator.shutdown()
            logging_module.logger.remove()

    def test_builds_default_orchestrator(self, tmp_path):
        """Test a default orchestrator is created when none is given."""
        context = create_app_context(log_dir=tmp_path / "logs")
        try:
            assert isinstance(context.orchestrator, OperationOrchestrator)
        finally:
            context.orchestrator.shutdown()
            logging_module.logger.remove()
