# reconcile.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import config
from diagnostics import Diagnostics
from discovery import discover_target_resources
from errors import IdentityError
from gate import LeadershipSignal
from labeler import Key, Labeler, LabelerStatus
from predicate import PredicateEngine

logger = logging.getLogger("reconcile")

LABEL = "label"
SKIP_COMPLIANT = "labels_already_applied"
SKIP_REJECTED = "predicate_rejected"


class ReconcilePlan(dict):
    """Per-candidate decisions and would-be status for one Labeler pass."""


@dataclass
class Action:
    requeue_after: float


class StatusBoard:
    """Last status computed per Labeler; replaced wholesale on every pass."""

    def __init__(self):
        self._lock = threading.Lock()
        self._statuses: Dict[Key, LabelerStatus] = {}

    def replace(self, key: Key, status: LabelerStatus) -> None:
        with self._lock:
            self._statuses[key] = status

    def get(self, key: Key) -> Optional[LabelerStatus]:
        with self._lock:
            return self._statuses.get(key)

    def forget(self, key: Key) -> None:
        with self._lock:
            self._statuses.pop(key, None)


@dataclass
class Context:
    dynamic: object  # kubernetes.dynamic.DynamicClient
    labelers: object  # k8s.LabelerClient
    recorder: object  # k8s.EventRecorder
    diagnostics: Diagnostics
    leader: LeadershipSignal
    state: StatusBoard = field(default_factory=StatusBoard)
    engine_factory: Callable[[], PredicateEngine] = PredicateEngine


def plan_label_patch(required: Dict[str, str], current: Optional[Dict[str, str]]) -> Optional[dict]:
    """Merge-patch bringing current labels up to required, or None if compliant.

    The patch carries the union of current and required labels (required wins),
    so unrelated labels are never removed and re-applying it is a no-op.
    """
    labels = dict(current or {})
    if not any(labels.get(k) != v for k, v in required.items()):
        return None
    labels.update(required)
    return {"metadata": {"labels": labels}}


def _describe(candidate: dict) -> Tuple[str, Optional[str], str]:
    meta = (candidate or {}).get("metadata", {}) or {}
    return meta.get("name", ""), meta.get("namespace"), (candidate or {}).get("kind") or "resource"


def _decide(doc: Labeler, engine: PredicateEngine, candidate: dict) -> Tuple[str, Optional[dict]]:
    eligible = True
    if doc.predicate:
        eligible = engine.evaluate(candidate, doc.predicate.query)
    meta = (candidate or {}).get("metadata", {}) or {}
    patch = plan_label_patch(doc.required_labels, meta.get("labels"))
    if not eligible:
        return SKIP_REJECTED, None
    if patch is None:
        return SKIP_COMPLIANT, None
    return LABEL, patch


def _prepare(obj: dict, ctx: Context):
    doc = Labeler.from_dict(obj)
    if not doc.uid:
        raise IdentityError(f"labeler {doc.namespace}/{doc.name} has no uid yet")
    handle, ar = discover_target_resources(ctx.dynamic, doc.target_api_version, doc.target_kind)
    candidates = handle.list()
    engine = ctx.engine_factory()
    if doc.predicate:
        engine.load(doc.uid, doc.predicate.policy)
    return doc, handle, ar, candidates, engine


def plan_reconcile(obj: dict, ctx: Context) -> ReconcilePlan:
    """Compute what reconcile() *would* do, without patching or publishing anything."""
    doc, _handle, ar, candidates, engine = _prepare(obj, ctx)

    entries: List[dict] = []
    labeled = skipped = 0
    for candidate in candidates:
        target, target_ns, _kind = _describe(candidate)
        decision, patch = _decide(doc, engine, candidate)
        if decision == LABEL:
            labeled += 1
        else:
            skipped += 1
        entries.append({"name": target, "namespace": target_ns, "decision": decision, "patch": patch})

    status = LabelerStatus(len(candidates), labeled, skipped)
    return ReconcilePlan(
        labeler=f"{doc.namespace}/{doc.name}",
        resource=f"{ar.plural}.{ar.api_version}",
        status=status.to_dict(),
        candidates=entries,
    )


def print_plan(plan: ReconcilePlan) -> None:
    counts = plan.get("status", {})
    print(
        f"[plan] labeler={plan.get('labeler')} resource={plan.get('resource')} "
        f"matched={counts.get('resourcesMatched', 0)} labeled={counts.get('resourcesLabeled', 0)} "
        f"skipped={counts.get('resourcesSkipped', 0)}"
    )
    for entry in plan.get("candidates", []) or []:
        where = f"{entry['namespace']}/{entry['name']}" if entry.get("namespace") else entry.get("name")
        if entry.get("decision") == LABEL:
            print(f"  + {where} labels={entry['patch']['metadata']['labels']}")
        else:
            print(f"  - {where} skip:{entry.get('decision')}")


def flush_status(doc: Labeler, status: LabelerStatus, ctx: Context) -> None:
    if not doc.namespace:
        raise IdentityError(f"labeler {doc.name} has no namespace")
    if not doc.name:
        raise IdentityError("labeler has no name")
    logger.debug("flushing status for %s/%s: %s", doc.namespace, doc.name, status.to_dict())
    ctx.labelers.patch_status(doc.namespace, doc.name, status.to_dict())


def reconcile(obj: dict, ctx: Context) -> Action:
    """One pass over every resource of the Labeler's target kind.

    Flow: discover -> list -> rego (default allow) -> plan patch -> patch ->
    status flush -> completion event. Writes happen only while this replica
    holds the lease. A failed patch aborts the pass; the next pass starts
    from scratch, which is safe because labeling is idempotent.
    """
    doc, handle, ar, candidates, engine = _prepare(obj, ctx)
    oref = doc.object_ref()
    logger.info(
        "reconciling %s/%s: %d %s found (rego=%s)",
        doc.namespace, doc.name, len(candidates), ar.plural, doc.predicate is not None,
    )

    labeled = 0
    skipped = 0
    for candidate in candidates:
        target, target_ns, kind = _describe(candidate)
        decision, patch = _decide(doc, engine, candidate)
        if decision != LABEL:
            logger.debug("skipping %s %s/%s: %s", kind, target_ns or "", target, decision)
            skipped += 1
            continue

        if ctx.leader.is_leader():
            ctx.recorder.publish(
                oref, "Normal", "AdjustingLabels", "Labeling",
                f"Labeling {kind}: {target} with rule: {doc.name}",
            )
            target_api = handle.namespaced(target_ns) if target_ns else handle
            target_api.patch(target, patch)
            logger.debug("patched %s %s/%s", kind, target_ns or "", target)
        else:
            logger.debug("not leader, leaving %s %s/%s unpatched", kind, target_ns or "", target)
        labeled += 1

    status = LabelerStatus(
        resources_matched=len(candidates),
        resources_labeled=labeled,
        resources_skipped=skipped,
    )
    ctx.state.replace(doc.key, status)

    # leadership is re-read before every write
    if ctx.leader.is_leader():
        flush_status(doc, status, ctx)
    if ctx.leader.is_leader():
        ctx.recorder.publish(
            oref, "Normal", "ReconciliationComplete", "Reconcile",
            f"Labeled {labeled} of {len(candidates)} resources ({skipped} skipped)",
        )

    ctx.diagnostics.mark_success()
    logger.info(
        "reconciled %s/%s: matched=%d labeled=%d skipped=%d, next pass in %ss",
        doc.namespace, doc.name, len(candidates), labeled, skipped, config.REQUEUE_SUCCESS_SECONDS,
    )
    return Action(requeue_after=config.REQUEUE_SUCCESS_SECONDS)


def error_policy(obj: dict, err: Exception, ctx: Context) -> Action:
    """Log, warn on the Labeler (best-effort), retry in a minute. No backoff, no cap."""
    doc = Labeler.from_dict(obj)
    logger.error(
        "reconciliation of %s/%s failed (%s): %s; retrying in %ss",
        doc.namespace, doc.name, type(err).__name__, err, config.REQUEUE_FAILURE_SECONDS,
    )
    if ctx.leader.is_leader():
        ctx.recorder.publish(doc.object_ref(), "Warning", "ReconciliationFailed", "Reconcile", f"Error: {err}")
    return Action(requeue_after=config.REQUEUE_FAILURE_SECONDS)
