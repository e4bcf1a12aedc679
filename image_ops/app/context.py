from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from image_ops.logging import LoggerFactory, setup_logging
from image_ops.services.orchestrator import OperationOrchestrator


@dataclass
class LogEntry:
    message: str
    level: str = "info"
    tags: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)
    source: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "level": self.level,
            "tags": list(self.tags),
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
            "details": self.details,
        }


@dataclass
class AppContext:
    """Composition root: the one orchestrator plus the UI log buffer."""

    orchestrator: Optional[OperationOrchestrator] = None
    log_buffer: Deque[LogEntry] = field(default_factory=lambda: deque(maxlen=500))

    def add_log(
        self,
        message: str,
        level: str = "info",
        tags: Optional[List[str]] = None,
        timestamp: Optional[datetime] = None,
        source: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not message:
            return
        self.log_buffer.append(
            LogEntry(
                message=message,
                level=level,
                tags=list(tags or []),
                timestamp=timestamp or datetime.now(),
                source=source,
                details=details,
            )
        )

    def recent_logs(self, limit: int = 50) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in list(self.log_buffer)[-limit:]]


def create_app_context(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
    orchestrator: OperationOrchestrator | None = None,
) -> AppContext:
    """Install logging and build the orchestrator the rest of the app shares."""
    context = AppContext()
    setup_logging(context, debug=debug, trace=trace, log_dir=log_dir)
    context.orchestrator = orchestrator or OperationOrchestrator()
    LoggerFactory.for_system().info("Operation orchestrator ready")
    return context
