# controller.py
"""Dispatch loop: Labeler watch -> work queue -> workers -> reconcile.

Passes for the same Labeler never overlap (the queue hands a key to one
worker at a time); passes for different Labelers run in parallel.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from kubernetes import watch

import config
import labeler as crd
from labeler import Key, key_of
from reconcile import Context, error_policy, reconcile
from workqueue import WorkQueue

logger = logging.getLogger("controller")

MAX_BACKOFF_SECONDS = 30.0


class Controller:
    def __init__(self, ctx: Context, queue: Optional[WorkQueue] = None, workers: int = config.WORKERS):
        self.ctx = ctx
        self.queue = queue or WorkQueue()
        self.workers = max(1, workers)
        self._lock = threading.Lock()
        self._generations: Dict[Key, Optional[int]] = {}

    # ─────────────────────────────────────────────
    # Event intake
    # ─────────────────────────────────────────────
    def known(self) -> List[Key]:
        with self._lock:
            return list(self._generations)

    def observe(self, event_type: str, obj: dict) -> None:
        """Feed one watch event into the queue."""
        key = key_of(obj)
        generation = ((obj or {}).get("metadata", {}) or {}).get("generation")

        if event_type == "DELETED":
            with self._lock:
                self._generations.pop(key, None)
            self.queue.forget(key)
            self.ctx.state.forget(key)
            logger.info("labeler %s/%s deleted", *key)
            return

        with self._lock:
            seen = key in self._generations
            changed = not seen or self._generations[key] != generation
            self._generations[key] = generation
        # status writes do not bump generation; don't loop on our own flushes
        if changed:
            self.queue.add(key)

    def relist(self) -> Optional[str]:
        res = self.ctx.labelers.list() or {}
        items = res.get("items", []) or []
        listed = {key_of(obj) for obj in items}
        with self._lock:
            gone = [k for k in self._generations if k not in listed]
        for key in gone:
            self.observe("DELETED", {"metadata": {"namespace": key[0], "name": key[1]}})
        for obj in items:
            self.observe("ADDED", obj)
        return (res.get("metadata", {}) or {}).get("resourceVersion")

    def watch_labelers(self, stop_event: threading.Event) -> None:
        backoff = 1.0
        while not stop_event.is_set():
            try:
                rv = self.relist()
                w = watch.Watch()
                for event in w.stream(
                    self.ctx.labelers.api.list_cluster_custom_object,
                    group=crd.GROUP,
                    version=crd.VERSION,
                    plural=crd.PLURAL,
                    resource_version=rv,
                    timeout_seconds=config.WATCH_TIMEOUT_SECONDS,
                ):
                    if stop_event.is_set():
                        w.stop()
                        break
                    if event.get("type") == "ERROR":
                        logger.warning("watch error: %s", event.get("raw_object") or event.get("object"))
                        break
                    self.observe(event.get("type", ""), event.get("object") or {})
                backoff = 1.0
            except Exception as e:
                logger.error("labeler watch failed: %s; restarting in %.0fs", e, backoff)
                stop_event.wait(backoff)
                backoff = min(backoff * 2, MAX_BACKOFF_SECONDS)

    # ─────────────────────────────────────────────
    # Leadership hand-over
    # ─────────────────────────────────────────────
    def follow_leadership(self, stop_event: threading.Event, poll: float = 1.0) -> None:
        """Re-enqueue every Labeler when this replica becomes leader."""
        was_leader = self.ctx.leader.is_leader()
        while not stop_event.is_set():
            is_leader = self.ctx.leader.wait_for_change(was_leader, timeout=poll)
            if is_leader and not was_leader:
                keys = self.known()
                logger.info("became leader, requeueing %d labelers", len(keys))
                for key in keys:
                    self.queue.add(key)
            was_leader = is_leader

    # ─────────────────────────────────────────────
    # Workers
    # ─────────────────────────────────────────────
    def process(self, key: Key) -> None:
        """Run one pass for key and schedule the next one."""
        namespace, name = key
        try:
            obj = self.ctx.labelers.get(namespace, name)
        except Exception as e:
            logger.error("failed to fetch labeler %s/%s: %s", namespace, name, e)
            self.queue.add_after(key, config.REQUEUE_FAILURE_SECONDS)
            return

        if obj is None:
            self.queue.forget(key)
            return

        try:
            action = reconcile(obj, self.ctx)
        except Exception as err:
            action = error_policy(obj, err, self.ctx)
        self.queue.add_after(key, action.requeue_after)

    def process_next(self, timeout: Optional[float] = None) -> bool:
        key = self.queue.get(timeout=timeout)
        if key is None:
            return False
        try:
            self.process(key)
        finally:
            self.queue.done(key)
        return True

    def _worker(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                self.process_next(timeout=1.0)
            except Exception as e:
                logger.exception("worker failed handling a labeler: %s", e)

    def run(self, stop_event: threading.Event) -> None:
        logger.info("starting controller with %d workers", self.workers)
        threads = [
            threading.Thread(target=self.watch_labelers, args=(stop_event,), name="labeler-watch", daemon=True),
            threading.Thread(target=self.follow_leadership, args=(stop_event,), name="leadership", daemon=True),
        ]
        threads += [
            threading.Thread(target=self._worker, args=(stop_event,), name=f"worker-{i}", daemon=True)
            for i in range(self.workers)
        ]
        for t in threads:
            t.start()

        stop_event.wait()
        self.queue.shut_down()
        for t in threads:
            t.join(timeout=5)
        logger.info("controller shutdown complete")
