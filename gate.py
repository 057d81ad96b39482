# gate.py
"""Leadership signal gating every write the controller makes.

Single writer (the lease loop), many readers (reconcile passes).
Last value wins.
"""

from __future__ import annotations

import threading
from typing import Optional


class LeadershipSignal:
    def __init__(self, initial: bool = False):
        self._cond = threading.Condition()
        self._leader = initial

    def is_leader(self) -> bool:
        with self._cond:
            return self._leader

    def set(self, leader: bool) -> bool:
        """Publish a new value, returning the previous one."""
        with self._cond:
            prev = self._leader
            self._leader = bool(leader)
            if prev != self._leader:
                self._cond.notify_all()
            return prev

    def wait_for_change(self, current: bool, timeout: Optional[float] = None) -> bool:
        """Block until the value differs from current (or timeout); return the value."""
        with self._cond:
            self._cond.wait_for(lambda: self._leader != current, timeout=timeout)
            return self._leader
