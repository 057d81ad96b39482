# discovery.py
"""Resolve a Labeler's resourceApi/resourceKind against the live API catalog.

Nothing is cached between passes: CRDs can be installed or removed while a
Labeler exists, so every pass re-reads the catalog.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from errors import ApiError, DiscoveryError
from k8s import ApiResource, ResourceHandle, request_json
from labeler import RESOURCE_API_PATTERN

logger = logging.getLogger("discovery")

REQUIRED_VERBS = ("list", "patch")

_GV_RE = re.compile(RESOURCE_API_PATTERN)


def parse_group_version(api_version: str) -> Tuple[str, str]:
    """ "v1" -> ("", "v1"), "apps/v1" -> ("apps", "v1")."""
    gv = (api_version or "").strip()
    if not gv or not _GV_RE.match(gv):
        raise DiscoveryError(f"invalid api group/version {api_version!r}")
    if "/" in gv:
        group, version = gv.split("/", 1)
        return group, version
    return "", gv


def _catalog_path(group: str, version: str) -> str:
    return f"/apis/{group}/{version}" if group else f"/api/{version}"


def fetch_catalog(dynamic, group: str, version: str) -> List[dict]:
    """APIResourceList.resources for one group/version."""
    path = _catalog_path(group, version)
    try:
        res = request_json(dynamic, "GET", path, f"discover {path}")
    except ApiError as e:
        if e.status == 404:
            gv = f"{group}/{version}" if group else version
            raise DiscoveryError(f"api group/version {gv!r} is not served by the cluster") from e
        raise
    return res.get("resources", []) or []


def resolve_kind(resources: List[dict], group: str, version: str, kind: str) -> Optional[ApiResource]:
    """Case-insensitive kind match, ignoring subresources (pods/status, ...)."""
    wanted = (kind or "").lower()
    for r in resources:
        name = r.get("name", "") or ""
        if "/" in name:
            continue
        if str(r.get("kind", "")).lower() != wanted:
            continue
        return ApiResource(
            group=r.get("group") or group,
            version=r.get("version") or version,
            kind=r.get("kind", kind),
            plural=name,
            namespaced=bool(r.get("namespaced", False)),
            verbs=list(r.get("verbs", []) or []),
        )
    return None


def discover_target_resources(dynamic, api_version: str, kind: str) -> Tuple[ResourceHandle, ApiResource]:
    """Return an all-namespaces handle for kind plus its resolved description."""
    group, version = parse_group_version(api_version)
    resources = fetch_catalog(dynamic, group, version)
    ar = resolve_kind(resources, group, version, kind)
    if ar is None:
        raise DiscoveryError(f"unable to find kind {kind!r} in {api_version!r}")

    missing = [v for v in REQUIRED_VERBS if v not in ar.verbs]
    if missing:
        raise DiscoveryError(f"{ar.plural}.{ar.api_version} does not support verbs: {', '.join(missing)}")

    logger.debug("resolved %s %s -> %s (namespaced=%s)", api_version, kind, ar.plural, ar.namespaced)
    return ResourceHandle(dynamic, ar), ar
