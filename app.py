# app.py
from __future__ import annotations

import logging
import signal
import sys
import threading

from kubernetes import client

import config
from controller import Controller
from diagnostics import Diagnostics
from errors import ApiError
from gate import LeadershipSignal
from k8s import EventRecorder, LabelerClient, dynamic_client, load_kube
from lease import LeaseLock, run_leader_election
from reconcile import Context

logger = logging.getLogger("controller")


def setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
    )


def build_context(api_client, labelers: LabelerClient) -> Context:
    diagnostics = Diagnostics(reporter=config.REPORTER)
    return Context(
        dynamic=dynamic_client(api_client),
        labelers=labelers,
        recorder=EventRecorder(diagnostics.reporter, config.HOSTNAME, api=client.EventsV1Api(api_client)),
        diagnostics=diagnostics,
        leader=LeadershipSignal(False),
    )


# ─────────────────────────────────────────────
# Main
# ─────────────────────────────────────────────
def main() -> int:
    setup_logging()
    source = load_kube()
    logger.info("using %s config", source)

    api_client = client.ApiClient()
    labelers = LabelerClient(client.CustomObjectsApi(api_client))

    try:
        labelers.list(limit=1)
    except ApiError as e:
        logger.error("failed to list labeler resources, CRD may not be installed: %s", e)
        return 1
    logger.info("labeler CRD verified, starting controller")

    ctx = build_context(api_client, labelers)
    lock = LeaseLock(
        namespace=config.NAMESPACE,
        name=config.LEASE_NAME,
        holder_id=config.HOSTNAME,
        ttl_seconds=config.LEASE_TTL_SECONDS,
        api=client.CoordinationV1Api(api_client),
    )

    stop_event = threading.Event()

    def _shutdown(signum, _frame) -> None:
        logger.info("received signal %s, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    election_thread = threading.Thread(
        target=run_leader_election,
        args=(lock, ctx.leader, stop_event),
        name="leader-election",
        daemon=True,
    )
    controller_thread = threading.Thread(
        target=Controller(ctx).run,
        args=(stop_event,),
        name="controller",
        daemon=True,
    )
    election_thread.start()
    controller_thread.start()

    try:
        while not stop_event.is_set():
            stop_event.wait(1)
    except KeyboardInterrupt:
        stop_event.set()

    ctx.leader.set(False)
    controller_thread.join(timeout=10)
    election_thread.join(timeout=10)
    logger.info("shutdown complete (last successful reconcile %s)", ctx.diagnostics.snapshot()["last_event"])
    return 0


if __name__ == "__main__":
    sys.exit(main())
