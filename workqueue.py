# workqueue.py
"""Level-triggered work queue.

- adding a key that is already queued is a no-op (coalescing)
- a key is handed to one worker at a time; re-adds while it is being
  processed are parked until done()
- add_after keeps only the earliest pending due time per key
"""

from __future__ import annotations

import heapq
import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Hashable, List, Optional, Set, Tuple

logger = logging.getLogger("workqueue")


class WorkQueue:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: Deque[Hashable] = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._waiting: Dict[Hashable, float] = {}
        self._heap: List[Tuple[float, int, Hashable]] = []
        self._seq = 0
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def _add_locked(self, key: Hashable) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def add(self, key: Hashable) -> None:
        with self._cond:
            self._add_locked(key)

    def add_after(self, key: Hashable, delay: float) -> None:
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            due = self._clock() + delay
            pending = self._waiting.get(key)
            if pending is not None and pending <= due:
                return
            self._waiting[key] = due
            self._seq += 1
            heapq.heappush(self._heap, (due, self._seq, key))
            logger.debug("scheduled %s in %.0fs", key, delay)
            self._cond.notify_all()

    def pending(self, key: Hashable) -> Optional[float]:
        """Seconds until key's delayed add fires, or None."""
        with self._cond:
            due = self._waiting.get(key)
            return None if due is None else max(0.0, due - self._clock())

    def forget(self, key: Hashable) -> None:
        with self._cond:
            self._waiting.pop(key, None)

    def _promote_due_locked(self) -> Optional[float]:
        """Move due delayed keys onto the queue; return seconds until the next one."""
        now = self._clock()
        while self._heap:
            due, _, key = self._heap[0]
            if self._waiting.get(key) != due:
                heapq.heappop(self._heap)  # superseded or forgotten
                continue
            if due > now:
                return due - now
            heapq.heappop(self._heap)
            del self._waiting[key]
            self._add_locked(key)
        return None

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """Next key to process, or None on shutdown/timeout."""
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                next_due = self._promote_due_locked()
                if self._queue:
                    key = self._queue.popleft()
                    self._dirty.discard(key)
                    self._processing.add(key)
                    return key
                if self._shutting_down:
                    return None
                wait = next_due
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: Hashable) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shut_down(self) -> None:
        with self._cond:
            logger.debug("shutting down with %d queued, %d delayed", len(self._queue), len(self._waiting))
            self._shutting_down = True
            self._cond.notify_all()
