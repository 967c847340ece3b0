"""Append-only progress channel for audit runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .logging import get_logger
from .models import ScanReport

logger = get_logger("progress")

# stage -> (start, span) on the 0-100 scale
STAGE_WEIGHTS: Dict[str, tuple[int, int]] = {
    "initializing": (0, 5),
    "downloading": (5, 10),
    "extracting": (15, 10),
    "heuristics": (25, 5),
    "sampling": (30, 5),
    "parsing": (35, 10),
    "analyzing": (45, 40),
    "synthesizing": (85, 10),
    "complete": (100, 0),
}


def calculate_progress(stage: str, stage_percent: float = 0.0) -> int:
    """Map a percentage within ``stage`` onto the overall 0-100 scale."""
    start, span = STAGE_WEIGHTS.get(stage, (0, 0))
    bounded = min(max(stage_percent, 0.0), 100.0)
    return int(round(start + span * bounded / 100))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ProgressEvent:
    """One published event; ``kind`` is progress, complete or error."""

    kind: str
    stage: str
    progress: int
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    report: Optional[ScanReport] = None
    error: Optional[str] = None
    timestamp: str = field(default_factory=_now)

    @property
    def terminal(self) -> bool:
        return self.kind in {"complete", "error"}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": self.kind,
            "stage": self.stage,
            "progress": self.progress,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        if self.details:
            payload["details"] = dict(self.details)
        if self.report is not None:
            payload["report"] = self.report.to_dict()
        if self.error is not None:
            payload["error"] = self.error
        return payload


Subscriber = Callable[[ProgressEvent], None]


class ProgressPublisher:
    """Fans events out to subscribers; published progress never decreases."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._last_progress = 0
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def stage(
        self,
        stage: str,
        progress: int,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._emit(ProgressEvent("progress", stage, progress, message, dict(details or {})))

    def complete(self, report: ScanReport, message: str = "Audit complete") -> None:
        self._emit(ProgressEvent("complete", "complete", 100, message, report=report))

    def error(self, message: str, stage: str = "error") -> None:
        self._emit(
            ProgressEvent("error", stage, self._last_progress, message, error=message)
        )

    def _emit(self, event: ProgressEvent) -> None:
        if self._finished:
            logger.debug("Dropping %s event after terminal event", event.kind)
            return
        event.progress = max(self._last_progress, min(event.progress, 100))
        self._last_progress = event.progress
        if event.terminal:
            self._finished = True
        logger.debug("[%s] %d%% %s", event.stage, event.progress, event.message)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Progress subscriber failed")


__all__ = [
    "ProgressEvent",
    "ProgressPublisher",
    "STAGE_WEIGHTS",
    "calculate_progress",
]
