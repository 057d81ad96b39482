from __future__ import annotations

import threading
import time

import config
from conftest import FakeLabelers, make_labeler, make_obj
from controller import Controller
from errors import ApiError
from workqueue import WorkQueue

KEY = ("default", "team-x")


def _controller(ctx, labelers: FakeLabelers) -> Controller:
    ctx.labelers = labelers
    return Controller(ctx, queue=WorkQueue(), workers=1)


def test_generation_changes_enqueue_status_writes_do_not(ctx) -> None:
    c = _controller(ctx, FakeLabelers())
    c.observe("ADDED", make_labeler(generation=1))
    assert c.queue.get(timeout=0) == KEY
    c.queue.done(KEY)

    c.observe("MODIFIED", make_labeler(generation=1))  # status flush
    assert c.queue.get(timeout=0) is None

    c.observe("MODIFIED", make_labeler(generation=2))
    assert c.queue.get(timeout=0) == KEY


def test_deleted_labeler_is_forgotten(ctx) -> None:
    c = _controller(ctx, FakeLabelers())
    c.observe("ADDED", make_labeler())
    c.queue.add_after(KEY, 300)
    c.observe("DELETED", make_labeler())
    assert c.known() == []
    assert c.queue.pending(KEY) is None


def test_relist_enqueues_everything_and_drops_vanished(ctx) -> None:
    doc = make_labeler()
    other = make_labeler(name="gone")
    labelers = FakeLabelers([doc, other])
    c = _controller(ctx, labelers)

    assert c.relist() == "42"
    assert sorted(c.known()) == [("default", "gone"), KEY]

    del labelers.objs[("default", "gone")]
    c.relist()
    assert c.known() == [KEY]


def test_successful_pass_requeues_in_five_minutes(cluster, ctx) -> None:
    cluster.add("/api/v1/pods", make_obj("web"))
    labelers = FakeLabelers([make_labeler()])
    c = _controller(ctx, labelers)
    c.queue.add(KEY)

    assert c.process_next(timeout=0) is True
    assert cluster.find("/api/v1/pods", "web", "default")["metadata"]["labels"] == {"team": "x"}
    assert labelers.objs[KEY]["status"]["resourcesLabeled"] == 1
    assert 0 < c.queue.pending(KEY) <= config.REQUEUE_SUCCESS_SECONDS


def test_failed_pass_goes_through_error_policy(recorder, ctx) -> None:
    labelers = FakeLabelers([make_labeler(kind="Widget")])
    c = _controller(ctx, labelers)
    c.queue.add(KEY)

    c.process_next(timeout=0)

    assert recorder.reasons() == ["ReconciliationFailed"]
    assert labelers.status_patches == []
    assert 0 < c.queue.pending(KEY) <= config.REQUEUE_FAILURE_SECONDS


def test_vanished_labeler_gets_no_pass(recorder, ctx) -> None:
    c = _controller(ctx, FakeLabelers())
    c.queue.add(KEY)
    c.process_next(timeout=0)
    assert c.queue.pending(KEY) is None
    assert recorder.events == []


def test_fetch_failure_retries_in_a_minute(ctx) -> None:
    labelers = FakeLabelers([make_labeler()])
    labelers.get_error = ApiError("get labeler failed", status=500)
    c = _controller(ctx, labelers)
    c.queue.add(KEY)
    c.process_next(timeout=0)
    assert 0 < c.queue.pending(KEY) <= config.REQUEUE_FAILURE_SECONDS


def test_becoming_leader_requeues_known_labelers(ctx) -> None:
    ctx.leader.set(False)
    c = _controller(ctx, FakeLabelers())
    c.observe("ADDED", make_labeler())
    assert c.queue.get(timeout=0) == KEY
    c.queue.done(KEY)

    stop = threading.Event()
    t = threading.Thread(target=c.follow_leadership, args=(stop, 0.05), daemon=True)
    t.start()
    time.sleep(0.1)
    ctx.leader.set(True)

    assert c.queue.get(timeout=2) == KEY
    stop.set()
    t.join(timeout=2)


def test_worker_survives_a_failing_pass(ctx) -> None:
    c = _controller(ctx, FakeLabelers())
    handled = []

    def process(key):
        if key == ("default", "bad"):
            raise RuntimeError("boom")
        handled.append(key)

    c.process = process
    stop = threading.Event()
    t = threading.Thread(target=c._worker, args=(stop,), daemon=True)
    t.start()
    c.queue.add(("default", "bad"))
    c.queue.add(KEY)

    deadline = time.monotonic() + 2
    while not handled and time.monotonic() < deadline:
        time.sleep(0.01)
    stop.set()
    c.queue.shut_down()
    t.join(timeout=2)

    assert handled == [KEY]
