# errors.py
from __future__ import annotations

from typing import Optional


class LabelerError(Exception):
    """Base class for everything a reconciliation pass can fail with."""


class DiscoveryError(LabelerError):
    """Target group/version/kind cannot be resolved against the cluster catalog."""


class PredicateLoadError(LabelerError):
    """Rego policy source failed to parse."""


class PredicateEvalError(LabelerError):
    """Rego query failed or did not produce a single boolean."""


class IdentityError(LabelerError):
    """Object has no stable identity (uid/namespace/name) yet."""


class SerializationError(LabelerError):
    """Candidate object could not be turned into predicate input."""


class ApiError(LabelerError):
    """Transport or server failure talking to the kube-apiserver."""

    def __init__(self, message: str, status: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.reason = reason

    @classmethod
    def from_exception(cls, exc: Exception, what: str) -> "ApiError":
        status = getattr(exc, "status", None)
        reason = getattr(exc, "reason", None)
        return cls(f"{what} failed: {status} {reason}".strip(), status=status, reason=reason)
