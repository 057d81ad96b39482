# predicate.py
"""Rego conditions evaluated per candidate resource via regorus.

One engine per reconciliation pass; policies are keyed by the Labeler uid
so a policy is parsed once per pass no matter how many candidates follow.
"""

from __future__ import annotations

import json
import logging
from typing import Dict, List

import regorus

from errors import PredicateEvalError, PredicateLoadError, SerializationError

logger = logging.getLogger("predicate")

POLICY_SUFFIX = ".rego"


def policy_path(uid: str) -> str:
    return f"{uid}{POLICY_SUFFIX}"


class PredicateEngine:
    def __init__(self):
        self._engine = regorus.Engine()
        self._policies: Dict[str, str] = {}  # path -> package

    def loaded(self) -> List[str]:
        return sorted(self._policies)

    def load(self, uid: str, policy: str) -> bool:
        """Register policy under uid. Returns False if it was already loaded."""
        path = policy_path(uid)
        if path in self._policies:
            return False
        try:
            package = self._engine.add_policy(path, policy)
        except Exception as e:
            raise PredicateLoadError(f"failed to load rego policy {path}: {e}") from e
        self._policies[path] = package
        logger.info("rego policy loaded (%s, package %s)", path, package)
        return True

    def evaluate(self, candidate: dict, query: str) -> bool:
        try:
            doc = json.dumps(candidate)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"candidate is not JSON serializable: {e}") from e

        try:
            self._engine.set_input_json(doc)
            results = self._engine.eval_query(query)
        except Exception as e:
            raise PredicateEvalError(f"rego query {query!r} failed: {e}") from e

        return _as_bool(results, query)


def _as_bool(results, query: str) -> bool:
    """Exactly one result with exactly one boolean expression."""
    rows = (results or {}).get("result", []) or []
    if len(rows) != 1:
        raise PredicateEvalError(f"rego query {query!r} produced {len(rows)} results, expected 1")
    exprs = (rows[0] or {}).get("expressions", []) or []
    if len(exprs) != 1:
        raise PredicateEvalError(f"rego query {query!r} produced {len(exprs)} expressions, expected 1")
    value = (exprs[0] or {}).get("value")
    if not isinstance(value, bool):
        raise PredicateEvalError(f"rego query {query!r} did not evaluate to a boolean (got {value!r})")
    return value
