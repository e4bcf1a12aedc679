"""Minimal notification signals.

A ``Signal`` keeps an ordered list of callbacks and calls each of them on
``emit``. A failing listener is logged and skipped so the remaining listeners
and the emitter's own bookkeeping are unaffected.
"""

from __future__ import annotations

from typing import Any, Callable

from image_ops.logging import get_logger

log = get_logger(source="signals", tags=["orchestrator"])


class Signal:
    """Named notification with any number of listeners."""

    def __init__(self, name: str):
        self.name = name
        self._listeners: list[Callable[..., Any]] = []

    def connect(self, callback: Callable[..., Any]) -> Callable[..., Any]:
        """Register ``callback``; returns it so this can be used as a decorator."""
        if callback not in self._listeners:
            self._listeners.append(callback)
        return callback

    def disconnect(self, callback: Callable[..., Any]) -> None:
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    def emit(self, *args: Any) -> None:
        for callback in list(self._listeners):
            try:
                callback(*args)
            except Exception as exc:
                log.exception(f"Listener for {self.name} failed: {exc}")

    def __len__(self) -> int:
        return len(self._listeners)

    def __repr__(self) -> str:
        return f"Signal({self.name!r}, listeners={len(self._listeners)})"
