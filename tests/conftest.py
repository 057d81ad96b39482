from __future__ import annotations

import copy
import json
from typing import Dict, List, Optional

import pytest
from kubernetes.client.rest import ApiException

from diagnostics import Diagnostics
from gate import LeadershipSignal
from reconcile import Context

ALL_VERBS = ["create", "delete", "get", "list", "patch", "update", "watch"]

CORE_V1 = [
    {"name": "pods", "singularName": "pod", "namespaced": True, "kind": "Pod", "verbs": ALL_VERBS},
    {"name": "pods/status", "singularName": "", "namespaced": True, "kind": "Pod", "verbs": ["get", "patch"]},
    {"name": "namespaces", "singularName": "namespace", "namespaced": False, "kind": "Namespace", "verbs": ALL_VERBS},
    {"name": "bindings", "singularName": "binding", "namespaced": True, "kind": "Binding", "verbs": ["create"]},
]

APPS_V1 = [
    {"name": "deployments", "singularName": "deployment", "namespaced": True, "kind": "Deployment", "verbs": ALL_VERBS},
]


def merge_patch(target, patch):
    """RFC 7386 JSON merge patch."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    out = dict(target) if isinstance(target, dict) else {}
    for k, v in patch.items():
        if v is None:
            out.pop(k, None)
        else:
            out[k] = merge_patch(out.get(k), v)
    return out


def make_obj(name: str, namespace: Optional[str] = "default", labels: Optional[dict] = None, **extra) -> dict:
    meta = {"name": name}
    if namespace:
        meta["namespace"] = namespace
    if labels is not None:
        meta["labels"] = dict(labels)
    obj = {"metadata": meta}
    obj.update(extra)
    return obj


def make_labeler(
    labels: Optional[dict] = None,
    api: str = "v1",
    kind: str = "Pod",
    rego: Optional[dict] = None,
    name: str = "team-x",
    namespace: str = "default",
    uid: Optional[str] = "uid-1",
    generation: int = 1,
) -> dict:
    meta = {"name": name, "namespace": namespace, "generation": generation}
    if uid:
        meta["uid"] = uid
    spec = {"resourceApi": api, "resourceKind": kind, "labels": labels if labels is not None else {"team": "x"}}
    if rego is not None:
        spec["rego"] = rego
    return {"apiVersion": "stickerbomb.dev/v1alpha1", "kind": "Labeler", "metadata": meta, "spec": spec}


class FakeResponse:
    """What DynamicClient.request(..., serialize=False) hands back."""

    def __init__(self, payload):
        self.status = 200
        self.data = json.dumps(payload).encode("utf-8")


class FakeCluster:
    """Stands in for kubernetes.dynamic.DynamicClient.request."""

    def __init__(self, catalogs: Optional[Dict[str, List[dict]]] = None):
        self.catalogs = catalogs if catalogs is not None else {"/api/v1": CORE_V1, "/apis/apps/v1": APPS_V1}
        self.objects: Dict[str, List[dict]] = {}  # collection path -> objects
        self.calls: List[tuple] = []
        self.fail_patch: Dict[str, ApiException] = {}

    def add(self, collection: str, obj: dict) -> None:
        self.objects.setdefault(collection, []).append(copy.deepcopy(obj))

    def find(self, collection: str, name: str, namespace: Optional[str] = None) -> Optional[dict]:
        for obj in self.objects.get(collection, []):
            meta = obj.get("metadata", {})
            if meta.get("name") == name and meta.get("namespace") == namespace:
                return obj
        return None

    def patches(self) -> List[tuple]:
        return [c for c in self.calls if c[0] == "PATCH"]

    def _split(self, path: str):
        """('/api/v1', 'pods', namespace or None, name or None) for object paths."""
        for base in self.catalogs:
            if not path.startswith(base + "/"):
                continue
            parts = path[len(base) + 1:].split("/")
            if parts[0] == "namespaces" and len(parts) >= 3:
                return base, parts[2], parts[1], parts[3] if len(parts) > 3 else None
            return base, parts[0], None, parts[1] if len(parts) > 1 else None
        return None

    def request(self, method, path, body=None, **params):
        self.calls.append((method, path, copy.deepcopy(body)))
        return FakeResponse(self.serve(method, path, body, **params))

    def serve(self, method, path, body=None, **params):
        if method == "GET" and path in self.catalogs:
            return {"kind": "APIResourceList", "groupVersion": path.split("/", 2)[-1], "resources": self.catalogs[path]}

        split = self._split(path)
        if split is None:
            raise ApiException(status=404, reason="Not Found")
        base, plural, namespace, name = split
        collection = f"{base}/{plural}"

        if method == "GET" and name is None:
            items = [
                copy.deepcopy(o) for o in self.objects.get(collection, [])
                if namespace is None or o.get("metadata", {}).get("namespace") == namespace
            ]
            return {"items": items, "metadata": {}}

        if method == "PATCH" and name is not None:
            if path in self.fail_patch:
                raise self.fail_patch[path]
            obj = self.find(collection, name, namespace)
            if obj is None:
                raise ApiException(status=404, reason="Not Found")
            merged = merge_patch(obj, body)
            obj.clear()
            obj.update(merged)
            return copy.deepcopy(obj)

        raise ApiException(status=405, reason="Method Not Allowed")


class FakeLabelers:
    def __init__(self, objs: Optional[List[dict]] = None):
        self.objs = {(o["metadata"]["namespace"], o["metadata"]["name"]): o for o in (objs or [])}
        self.status_patches: List[tuple] = []
        self.get_error: Optional[Exception] = None

    def list(self, limit=None) -> dict:
        return {"items": list(self.objs.values()), "metadata": {"resourceVersion": "42"}}

    def get(self, namespace, name):
        if self.get_error:
            raise self.get_error
        return self.objs.get((namespace, name))

    def patch_status(self, namespace, name, status):
        self.status_patches.append((namespace, name, dict(status)))
        obj = self.objs.get((namespace, name))
        if obj is not None:
            obj["status"] = dict(status)
        return obj


class FakeRecorder:
    def __init__(self):
        self.events: List[dict] = []

    def publish(self, regarding, event_type, reason, action, note):
        self.events.append(
            {"regarding": regarding, "type": event_type, "reason": reason, "action": action, "note": note}
        )

    def reasons(self) -> List[str]:
        return [e["reason"] for e in self.events]


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def labelers() -> FakeLabelers:
    return FakeLabelers()


@pytest.fixture
def recorder() -> FakeRecorder:
    return FakeRecorder()


@pytest.fixture
def ctx(cluster, labelers, recorder) -> Context:
    return Context(
        dynamic=cluster,
        labelers=labelers,
        recorder=recorder,
        diagnostics=Diagnostics(reporter="stickerbomb"),
        leader=LeadershipSignal(True),
    )
