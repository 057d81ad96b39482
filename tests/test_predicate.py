from __future__ import annotations

import pytest

from errors import PredicateEvalError, PredicateLoadError, SerializationError
from predicate import PredicateEngine, policy_path

POLICY = """
package stickerbomb

import rego.v1

default allow := false

allow if {
    input.metadata.namespace == "prod"
}
"""

QUERY = "data.stickerbomb.allow"


def _pod(namespace: str) -> dict:
    return {"apiVersion": "v1", "kind": "Pod", "metadata": {"name": "web", "namespace": namespace}}


def test_load_is_idempotent_per_uid() -> None:
    engine = PredicateEngine()
    assert engine.load("uid-1", POLICY) is True
    assert engine.load("uid-1", POLICY) is False
    assert engine.loaded() == [policy_path("uid-1")]


def test_policy_path_uses_rego_suffix() -> None:
    assert policy_path("abc") == "abc.rego"


def test_evaluate_true_and_false() -> None:
    engine = PredicateEngine()
    engine.load("uid-1", POLICY)
    assert engine.evaluate(_pod("prod"), QUERY) is True
    assert engine.evaluate(_pod("dev"), QUERY) is False


def test_input_is_replaced_between_candidates() -> None:
    engine = PredicateEngine()
    engine.load("uid-1", POLICY)
    results = [engine.evaluate(_pod(ns), QUERY) for ns in ("prod", "dev", "prod")]
    assert results == [True, False, True]


def test_broken_policy_fails_to_load() -> None:
    engine = PredicateEngine()
    with pytest.raises(PredicateLoadError):
        engine.load("uid-1", "package stickerbomb\nallow if {")
    assert engine.loaded() == []


def test_non_boolean_query_is_an_error() -> None:
    engine = PredicateEngine()
    engine.load("uid-1", POLICY)
    with pytest.raises(PredicateEvalError):
        engine.evaluate(_pod("prod"), "input.metadata.name")


def test_undefined_query_is_an_error() -> None:
    engine = PredicateEngine()
    engine.load("uid-1", POLICY)
    with pytest.raises(PredicateEvalError):
        engine.evaluate(_pod("prod"), "data.stickerbomb.missing")


def test_unserializable_candidate() -> None:
    engine = PredicateEngine()
    engine.load("uid-1", POLICY)
    with pytest.raises(SerializationError):
        engine.evaluate({"metadata": {"labels": {1, 2}}}, QUERY)
