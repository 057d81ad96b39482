# config.py
from __future__ import annotations

import os
from pathlib import Path

SERVICEACCOUNT_NAMESPACE = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")


def _controller_namespace() -> str:
    """
    Namespace that holds the leader lease.
    Priority:
      1) Environment variable NAMESPACE
      2) In-cluster service account namespace
      3) "default"
    """
    env_ns = os.environ.get("NAMESPACE")
    if env_ns:
        return env_ns
    try:
        ns = SERVICEACCOUNT_NAMESPACE.read_text().strip()
    except OSError:
        ns = ""
    return ns or "default"


NAMESPACE = _controller_namespace()
HOSTNAME = os.environ.get("HOSTNAME") or "unknown"
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
WORKERS = int(os.environ.get("WORKERS", "4"))
WATCH_TIMEOUT_SECONDS = int(os.environ.get("WATCH_TIMEOUT_SECONDS", "300"))

# Fixed cadence: no backoff, no jitter.
REQUEUE_SUCCESS_SECONDS = 300
REQUEUE_FAILURE_SECONDS = 60

LEASE_NAME = "stickerbomb-lease"
LEASE_TTL_SECONDS = 15
LEASE_RENEW_SECONDS = 5

REPORTER = "stickerbomb"
