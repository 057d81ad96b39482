#!/usr/bin/env python3
"""Plan-only runner: prints what the controller would do for one Labeler.

Usage:
  python3 tools/plan.py <namespace> <name>

Notes:
- Uses in-cluster config, falling back to your local kubeconfig (same as app.py).
- Runs discovery and the rego condition but never patches, flushes status or
  publishes events.
"""

from __future__ import annotations

import sys
from pathlib import Path

from kubernetes import client

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import config  # noqa: E402
from diagnostics import Diagnostics  # noqa: E402
from errors import LabelerError  # noqa: E402
from gate import LeadershipSignal  # noqa: E402
from k8s import LabelerClient, dynamic_client, load_kube  # noqa: E402
from reconcile import Context, plan_reconcile, print_plan  # noqa: E402


def main(argv: list[str]) -> int:
    if len(argv) != 2:
        print("usage: plan.py <namespace> <name>", file=sys.stderr)
        return 2
    namespace, name = argv

    print(f"[plan] using {load_kube()} config")
    api_client = client.ApiClient()
    labelers = LabelerClient(client.CustomObjectsApi(api_client))

    ctx = Context(
        dynamic=dynamic_client(api_client),
        labelers=labelers,
        recorder=None,
        diagnostics=Diagnostics(reporter=config.REPORTER),
        leader=LeadershipSignal(False),
    )

    try:
        obj = labelers.get(namespace, name)
        if obj is None:
            print(f"[plan] labeler {namespace}/{name} not found")
            return 1
        plan = plan_reconcile(obj, ctx)
    except LabelerError as e:
        print(f"[plan] {type(e).__name__}: {e}")
        return 3

    print_plan(plan)
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
