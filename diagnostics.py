# diagnostics.py
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, Optional


class Diagnostics:
    """Process-wide state shared by every reconciliation pass.

    last_event is the time of the last successful pass; reporter attributes
    emitted events to this controller.
    """

    def __init__(self, reporter: str, now: Optional[datetime] = None):
        self.reporter = reporter
        self._lock = threading.Lock()
        self._last_event = now or datetime.now(timezone.utc)

    @property
    def last_event(self) -> datetime:
        with self._lock:
            return self._last_event

    def mark_success(self, now: Optional[datetime] = None) -> None:
        with self._lock:
            self._last_event = now or datetime.now(timezone.utc)

    def snapshot(self) -> Dict[str, str]:
        return {"last_event": self.last_event.isoformat()}
