"""Analytics events produced by the engine.

The engine only builds ``AnalyticsEvent`` payloads and hands them to a sink.
``JsonlEventSink`` appends them to a file, one JSON document per line, the
same way console sessions were logged to the logs directory.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

LOGGER = logging.getLogger(__name__)

COMMAND_EXECUTED = "command_executed"
TASK_SUBMITTED = "task_submitted"
BADGE_AWARDED = "badge_awarded"
HINT_REQUESTED = "hint_requested"
DEVICE_MOUNTED = "device_mounted"


@dataclass
class AnalyticsEvent:
    type: str
    user_id: str
    scenario_id: Optional[str] = None
    task_id: Optional[str] = None
    success: bool = True
    detail: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EventSink:
    """Discards events. Subclasses deliver them somewhere."""

    def emit(self, event: AnalyticsEvent) -> None:
        pass


class MemoryEventSink(EventSink):
    """Keeps events in a list; handy for tests and the local console."""

    def __init__(self):
        self.events: List[AnalyticsEvent] = []
        self._lock = threading.Lock()

    def emit(self, event: AnalyticsEvent) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: str) -> List[AnalyticsEvent]:
        with self._lock:
            return [event for event in self.events if event.type == event_type]


class JsonlEventSink(EventSink):
    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def emit(self, event: AnalyticsEvent) -> None:
        line = json.dumps(event.to_dict())
        with self._lock:
            try:
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as exc:
                LOGGER.error("Failed to write event to %s: %s", self.path, exc)
