# labeler.py
"""Labeler custom resource: the policy document the controller enforces.

Wire format (spec.*):
  resourceApi   group/version of the target kind ("v1", "apps/v1", ...)
  resourceKind  PascalCase kind name ("Pod", "Deployment", ...)
  rego          optional {policy, query} evaluated per candidate
  labels        labels every eligible candidate must carry
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

GROUP = "stickerbomb.dev"
VERSION = "v1alpha1"
KIND = "Labeler"
PLURAL = "labelers"
SINGULAR = "labeler"
SHORT_NAMES = ["doc"]
API_VERSION = f"{GROUP}/{VERSION}"

RESOURCE_API_PATTERN = r"^([a-z0-9]([a-z0-9.-]*[a-z0-9])?/)?[a-z0-9]([a-z0-9-]*[a-z0-9])?$"
RESOURCE_KIND_PATTERN = r"^[A-Z][a-zA-Z0-9]*$"

Key = Tuple[str, str]  # (namespace, name)


@dataclass
class RegoRule:
    policy: str
    query: str


@dataclass
class LabelerStatus:
    resources_matched: int = 0
    resources_labeled: int = 0
    resources_skipped: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "resourcesMatched": self.resources_matched,
            "resourcesLabeled": self.resources_labeled,
            "resourcesSkipped": self.resources_skipped,
        }


@dataclass
class Labeler:
    name: str
    namespace: Optional[str]
    uid: Optional[str]
    target_api_version: str
    target_kind: str
    required_labels: Dict[str, str] = field(default_factory=dict)
    predicate: Optional[RegoRule] = None

    @classmethod
    def from_dict(cls, obj: dict) -> "Labeler":
        meta = (obj or {}).get("metadata", {}) or {}
        spec = (obj or {}).get("spec", {}) or {}
        rego = spec.get("rego") or None
        predicate = None
        if rego:
            predicate = RegoRule(policy=str(rego.get("policy", "")), query=str(rego.get("query", "")))
        labels = spec.get("labels", {}) or {}
        return cls(
            name=meta.get("name", ""),
            namespace=meta.get("namespace"),
            uid=meta.get("uid"),
            target_api_version=str(spec.get("resourceApi", "")),
            target_kind=str(spec.get("resourceKind", "")),
            required_labels={str(k): str(v) for k, v in labels.items()},
            predicate=predicate,
        )

    @property
    def key(self) -> Key:
        return (self.namespace or "", self.name)

    def object_ref(self) -> Dict[str, Any]:
        ref = {"apiVersion": API_VERSION, "kind": KIND, "name": self.name}
        if self.namespace:
            ref["namespace"] = self.namespace
        if self.uid:
            ref["uid"] = self.uid
        return ref


def key_of(obj: dict) -> Key:
    meta = (obj or {}).get("metadata", {}) or {}
    return (meta.get("namespace", "") or "", meta.get("name", "") or "")


def _spec_schema() -> Dict[str, Any]:
    return {
        "type": "object",
        "required": ["resourceApi", "resourceKind", "labels"],
        "properties": {
            "resourceApi": {
                "type": "string",
                "minLength": 1,
                "maxLength": 253,
                "pattern": RESOURCE_API_PATTERN,
                "description": 'Target api group/version (e.g., "v1", "apps/v1", "cert-manager.io/v1").',
            },
            "resourceKind": {
                "type": "string",
                "minLength": 1,
                "maxLength": 63,
                "pattern": RESOURCE_KIND_PATTERN,
                "description": 'Target kind (e.g., "Pod", "Deployment").',
            },
            "rego": {
                "type": "object",
                "nullable": True,
                "required": ["policy", "query"],
                "description": "Optional rego condition deciding whether a resource gets labeled.",
                "properties": {
                    "policy": {"type": "string", "minLength": 1, "maxLength": 65536},
                    "query": {
                        "type": "string",
                        "minLength": 1,
                        "maxLength": 1024,
                        "description": "Query evaluated as boolean against each resource.",
                    },
                },
            },
            "labels": {
                "type": "object",
                "minProperties": 1,
                "additionalProperties": {"type": "string"},
                "description": "Labels to apply (must contain at least one label).",
            },
        },
    }


def _status_schema() -> Dict[str, Any]:
    counter = {"type": "integer", "format": "int32", "minimum": 0}
    return {
        "type": "object",
        "nullable": True,
        "properties": {
            "resourcesMatched": dict(counter, description="Resources of resourceKind found in the last pass."),
            "resourcesLabeled": dict(counter, description="Resources labeled in the last pass."),
            "resourcesSkipped": dict(counter, description="Resources already compliant or rejected by rego."),
        },
    }


def crd_manifest() -> Dict[str, Any]:
    """apiextensions.k8s.io/v1 CustomResourceDefinition for Labeler."""
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": f"{PLURAL}.{GROUP}"},
        "spec": {
            "group": GROUP,
            "names": {
                "categories": [],
                "kind": KIND,
                "plural": PLURAL,
                "singular": SINGULAR,
                "shortNames": list(SHORT_NAMES),
            },
            "scope": "Namespaced",
            "versions": [
                {
                    "name": VERSION,
                    "served": True,
                    "storage": True,
                    "subresources": {"status": {}},
                    "additionalPrinterColumns": [],
                    "schema": {
                        "openAPIV3Schema": {
                            "type": "object",
                            "title": KIND,
                            "required": ["spec"],
                            "properties": {
                                "spec": _spec_schema(),
                                "status": _status_schema(),
                            },
                        }
                    },
                }
            ],
        },
    }


def json_schema(crd: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Standalone draft-07 JSON Schema for a Labeler document, for editors and linters."""
    crd = crd or crd_manifest()
    version = crd["spec"]["versions"][0]
    props = version["schema"]["openAPIV3Schema"]["properties"]
    return {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "object",
        "required": ["apiVersion", "kind", "metadata", "spec"],
        "properties": {
            "apiVersion": {"type": "string", "const": f"{crd['spec']['group']}/{version['name']}"},
            "kind": {"type": "string", "const": crd["spec"]["names"]["kind"]},
            "metadata": {
                "type": "object",
                "properties": {"name": {"type": "string"}, "namespace": {"type": "string"}},
                "required": ["name"],
            },
            "spec": props["spec"],
            "status": props["status"],
        },
    }
