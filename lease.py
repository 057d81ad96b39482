# lease.py
"""Leader election over a coordination.k8s.io/v1 Lease.

The loop renews every LEASE_RENEW_SECONDS and publishes whether this
replica holds the lease; a failed attempt is logged and leaves the
previously published value untouched.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

import config
from errors import ApiError
from gate import LeadershipSignal
from k8s import micro_time

logger = logging.getLogger("lease")


@dataclass
class LeaseState:
    acquired_lease: bool
    holder: Optional[str]


def _as_utc(ts) -> Optional[datetime]:
    if ts is None:
        return None
    if isinstance(ts, str):
        ts = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class LeaseLock:
    def __init__(self, namespace: str, name: str, holder_id: str, ttl_seconds: int, api=None):
        self.namespace = namespace
        self.name = name
        self.holder_id = holder_id
        self.ttl_seconds = ttl_seconds
        self.api = api or client.CoordinationV1Api()

    def _body(self, now: datetime, resource_version: Optional[str], acquire_time, transitions: int) -> dict:
        meta = {"name": self.name, "namespace": self.namespace}
        if resource_version:
            meta["resourceVersion"] = resource_version
        return {
            "apiVersion": "coordination.k8s.io/v1",
            "kind": "Lease",
            "metadata": meta,
            "spec": {
                "holderIdentity": self.holder_id,
                "leaseDurationSeconds": self.ttl_seconds,
                "acquireTime": acquire_time if isinstance(acquire_time, str) else micro_time(acquire_time or now),
                "renewTime": micro_time(now),
                "leaseTransitions": transitions,
            },
        }

    def try_acquire_or_renew(self, now: Optional[datetime] = None) -> LeaseState:
        now = now or datetime.now(timezone.utc)
        try:
            current = self.api.read_namespaced_lease(self.name, self.namespace).to_dict()
        except ApiException as e:
            if e.status != 404:
                raise ApiError.from_exception(e, f"read lease {self.namespace}/{self.name}") from e
            try:
                self.api.create_namespaced_lease(self.namespace, self._body(now, None, now, 0))
            except ApiException as ce:
                raise ApiError.from_exception(ce, f"create lease {self.namespace}/{self.name}") from ce
            return LeaseState(acquired_lease=True, holder=self.holder_id)

        meta = current.get("metadata", {}) or {}
        spec = current.get("spec", {}) or {}
        holder = spec.get("holder_identity")
        renewed = _as_utc(spec.get("renew_time"))
        duration = spec.get("lease_duration_seconds") or self.ttl_seconds
        transitions = spec.get("lease_transitions") or 0
        expired = renewed is None or renewed + timedelta(seconds=duration) < now

        if holder and holder != self.holder_id and not expired:
            return LeaseState(acquired_lease=False, holder=holder)

        if holder == self.holder_id:
            acquire_time = _as_utc(spec.get("acquire_time")) or now
        else:
            acquire_time = now
            transitions += 1

        body = self._body(now, meta.get("resource_version"), acquire_time, transitions)
        try:
            self.api.replace_namespaced_lease(self.name, self.namespace, body)
        except ApiException as e:
            raise ApiError.from_exception(e, f"update lease {self.namespace}/{self.name}") from e
        return LeaseState(acquired_lease=True, holder=self.holder_id)

    def release(self) -> None:
        """Clear the holder if it is us, so another replica can take over right away."""
        current = self.api.read_namespaced_lease(self.name, self.namespace).to_dict()
        spec = current.get("spec", {}) or {}
        if spec.get("holder_identity") != self.holder_id:
            return
        meta = current.get("metadata", {}) or {}
        body = {
            "apiVersion": "coordination.k8s.io/v1",
            "kind": "Lease",
            "metadata": {
                "name": self.name,
                "namespace": self.namespace,
                "resourceVersion": meta.get("resource_version"),
            },
            "spec": {
                "holderIdentity": None,
                "leaseDurationSeconds": 1,
                "leaseTransitions": spec.get("lease_transitions") or 0,
            },
        }
        self.api.replace_namespaced_lease(self.name, self.namespace, body)


def run_leader_election(lock: LeaseLock, leader: LeadershipSignal, stop_event: threading.Event,
                        interval: float = config.LEASE_RENEW_SECONDS) -> None:
    logger.info("starting leader election for lease %s/%s as %s", lock.namespace, lock.name, lock.holder_id)

    while not stop_event.is_set():
        try:
            state = lock.try_acquire_or_renew()
        except Exception as e:
            logger.error("failed to acquire lease lock: %s", e)
        else:
            prev = leader.set(state.acquired_lease)
            if prev != state.acquired_lease:
                if state.acquired_lease:
                    logger.info("acquired leadership")
                else:
                    logger.info("lost leadership to %s", state.holder)
        stop_event.wait(interval)

    leader.set(False)
    try:
        lock.release()
        logger.info("released lease %s/%s", lock.namespace, lock.name)
    except Exception as e:
        logger.warning("failed to release lease: %s", e)

    logger.info("leader election stopped")
