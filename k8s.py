# k8s.py
"""Thin wrappers around the kubernetes client.

Everything here translates ApiException into errors.ApiError so the
reconciler only ever sees the controller's own error taxonomy.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.dynamic import DynamicClient

import labeler as crd
from errors import ApiError

logger = logging.getLogger("events")

MERGE_PATCH = "application/merge-patch+json"
PAGE_SIZE = 500
NOTE_MAX_BYTES = 1024


def load_kube() -> str:
    try:
        config.load_incluster_config()
        return "in-cluster"
    except Exception:
        config.load_kube_config()
        return "kubeconfig"


def dynamic_client(api_client=None, cache_file: Optional[str] = None) -> DynamicClient:
    """Raw transport for runtime-typed resources.

    Only DynamicClient.request is used; kind resolution happens in
    discovery.py against a fresh catalog on every pass.
    """
    return DynamicClient(api_client or client.ApiClient(), cache_file=cache_file)


def truncate_note(note: str, limit: int = NOTE_MAX_BYTES) -> str:
    """Cut note to at most limit bytes of UTF-8 without splitting a character."""
    raw = (note or "").encode("utf-8")
    if len(raw) <= limit:
        return note or ""
    return raw[:limit].decode("utf-8", errors="ignore")


def micro_time(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@dataclass
class ApiResource:
    """A resolved entry of a group/version's resource catalog."""

    group: str
    version: str
    kind: str
    plural: str
    namespaced: bool
    verbs: List[str] = field(default_factory=list)

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    @property
    def base_path(self) -> str:
        if self.group:
            return f"/apis/{self.group}/{self.version}"
        return f"/api/{self.version}"


def request_json(dynamic, method: str, path: str, what: str, body=None, query=None, content_type=None):
    """One raw call through kubernetes.dynamic.DynamicClient.request, decoded to a dict."""
    try:
        resp = dynamic.request(
            method,
            path,
            body=body,
            query_params=list(query or []),
            header_params={"Accept": "application/json"},
            content_type=content_type,
            serialize=False,
        )
    except ApiException as e:
        raise ApiError.from_exception(e, what) from e
    data = getattr(resp, "data", None)
    if not data:
        return {}
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    return json.loads(data)


class ResourceHandle:
    """List/patch access to one resolved resource type, all namespaces or one."""

    def __init__(self, dynamic, resource: ApiResource, namespace: Optional[str] = None):
        self.dynamic = dynamic
        self.resource = resource
        self.namespace = namespace

    def namespaced(self, namespace: str) -> "ResourceHandle":
        return ResourceHandle(self.dynamic, self.resource, namespace)

    def _collection_path(self) -> str:
        base = self.resource.base_path
        if self.namespace and self.resource.namespaced:
            return f"{base}/namespaces/{self.namespace}/{self.resource.plural}"
        return f"{base}/{self.resource.plural}"

    def list(self) -> List[dict]:
        """All objects of the resource, following list pagination."""
        path = self._collection_path()
        items: List[dict] = []
        token: Optional[str] = None
        while True:
            query: List[tuple] = [("limit", PAGE_SIZE)]
            if token:
                query.append(("continue", token))
            res = request_json(self.dynamic, "GET", path, f"list {self.resource.plural}", query=query)
            for item in res.get("items", []) or []:
                # list responses omit per-item type metadata
                item.setdefault("apiVersion", self.resource.api_version)
                item.setdefault("kind", self.resource.kind)
                items.append(item)
            token = (res.get("metadata", {}) or {}).get("continue")
            if not token:
                return items

    def patch(self, name: str, body: dict) -> dict:
        path = f"{self._collection_path()}/{name}"
        return request_json(
            self.dynamic,
            "PATCH",
            path,
            f"patch {self.resource.plural}/{name}",
            body=body,
            content_type=MERGE_PATCH,
        )


class LabelerClient:
    """CustomObjectsApi wrapper for the Labeler resource."""

    def __init__(self, api=None):
        self.api = api or client.CustomObjectsApi()

    def list(self, limit: Optional[int] = None) -> dict:
        kwargs = {"limit": limit} if limit else {}
        try:
            return self.api.list_cluster_custom_object(
                group=crd.GROUP,
                version=crd.VERSION,
                plural=crd.PLURAL,
                **kwargs,
            )
        except ApiException as e:
            raise ApiError.from_exception(e, "list labelers") from e

    def get(self, namespace: str, name: str) -> Optional[dict]:
        """Current Labeler, or None once it is gone."""
        try:
            return self.api.get_namespaced_custom_object(
                group=crd.GROUP,
                version=crd.VERSION,
                namespace=namespace,
                plural=crd.PLURAL,
                name=name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise ApiError.from_exception(e, f"get labeler {namespace}/{name}") from e

    def patch_status(self, namespace: str, name: str, status: dict) -> dict:
        try:
            return self.api.patch_namespaced_custom_object_status(
                group=crd.GROUP,
                version=crd.VERSION,
                namespace=namespace,
                plural=crd.PLURAL,
                name=name,
                body={"status": status},
            )
        except ApiException as e:
            raise ApiError.from_exception(e, f"patch status of labeler {namespace}/{name}") from e


class EventRecorder:
    """Publishes events.k8s.io/v1 events. Never raises."""

    def __init__(self, reporter: str, instance: str, api=None):
        self.reporter = reporter
        self.instance = instance
        self.api = api or client.EventsV1Api()

    def publish(self, regarding: Dict[str, Any], event_type: str, reason: str, action: str, note: str) -> None:
        namespace = regarding.get("namespace") or "default"
        body = {
            "apiVersion": "events.k8s.io/v1",
            "kind": "Event",
            "metadata": {"generateName": f"{regarding.get('name', 'labeler')}.", "namespace": namespace},
            "eventTime": micro_time(),
            "reportingController": self.reporter,
            "reportingInstance": self.instance,
            "regarding": regarding,
            "type": event_type,
            "reason": reason,
            "action": action,
            "note": truncate_note(note),
        }
        try:
            self.api.create_namespaced_event(namespace, body)
        except Exception as e:
            logger.warning("failed to publish %s event for %s/%s: %s", reason, namespace, regarding.get("name"), e)
