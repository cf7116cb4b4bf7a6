import random

import pytest

from conftest import make_state
from errors import InvalidState
from timer_state import TimerState

T0 = 1_717_243_200_000


def test_starting_one_timer_stops_the_other():
    """P1 has been running for a minute on top of 100s; starting P2 folds P1 to 160s."""
    timers = TimerState("u1", [make_state("p1", 100, T0), make_state("p2", 50)])

    changed = timers.start_timer("p2", T0 + 60_000)

    p1, p2 = timers.get("p1"), timers.get("p2")
    assert p1.running_since is None
    assert p1.base_seconds == 160
    assert p2.running_since == T0 + 60_000
    assert p2.base_seconds == 50
    assert {r.project_id for r in changed} == {"p1", "p2"}


def test_start_already_running_is_a_no_op():
    timers = TimerState("u1", [make_state("p1", 10, T0)])
    assert timers.start_timer("p1", T0 + 30_000) == []
    assert timers.get("p1").running_since == T0


def test_stop_folds_elapsed():
    timers = TimerState("u1", [make_state("p1", 10, T0)])
    changed = timers.stop_timer("p1", T0 + 90_500)
    assert [r.project_id for r in changed] == ["p1"]
    assert timers.get("p1").base_seconds == 100
    assert timers.get("p1").running_since is None


def test_stop_idle_timer_changes_nothing():
    timers = TimerState("u1", [make_state("p1", 10)])
    assert timers.stop_timer("p1", T0) == []


def test_stop_all():
    timers = TimerState("u1", [make_state("p1", 0, T0), make_state("p2", 5)])
    changed = timers.stop_all(T0 + 10_000)
    assert [r.project_id for r in changed] == ["p1"]
    assert timers.running() == []


def test_preset_replaces_base_and_starts():
    timers = TimerState("u1", [make_state("p1", 0, T0), make_state("p2", 999)])
    timers.start_with_preset("p2", 1800, T0 + 5_000)

    assert timers.get("p2").base_seconds == 1800
    assert timers.get("p2").running_since == T0 + 5_000
    assert timers.get("p1").running_since is None
    assert timers.get("p1").base_seconds == 5


def test_preset_clamps_negative():
    timers = TimerState("u1", [make_state("p1", 300)])
    timers.start_with_preset("p1", -20, T0)
    assert timers.get("p1").base_seconds == 0


def test_adjust_clamps_at_zero():
    timers = TimerState("u1", [make_state("p1", 200)])
    timers.adjust_timer("p1", 300)
    assert timers.get("p1").base_seconds == 500
    timers.adjust_timer("p1", -1000)
    assert timers.get("p1").base_seconds == 0


def test_adjust_running_timer_keeps_session():
    timers = TimerState("u1", [make_state("p1", 100, T0)])
    timers.adjust_timer("p1", 60)
    assert timers.get("p1").running_since == T0
    assert timers.display_seconds("p1", T0 + 10_000) == 170


def test_reset():
    timers = TimerState("u1", [make_state("p1", 100, T0)])
    assert len(timers.reset_timer("p1")) == 1
    assert timers.get("p1").base_seconds == 0
    assert timers.get("p1").running_since is None
    assert timers.reset_timer("p1") == []


def test_blank_comment_is_cleared():
    timers = TimerState("u1", [make_state("p1", comment="draft")])
    timers.set_comment("p1", "   ")
    assert timers.get("p1").session_comment is None
    timers.set_comment("p1", "review notes")
    assert timers.get("p1").session_comment == "review notes"


def test_unknown_project_raises():
    timers = TimerState("u1", [make_state("p1")])
    with pytest.raises(InvalidState):
        timers.start_timer("nope", T0)
    with pytest.raises(InvalidState):
        timers.adjust_timer("nope", 10)


def test_records_of_another_user_rejected():
    with pytest.raises(InvalidState):
        TimerState("u1", [make_state("p1", user_id="u2")])


def test_input_records_are_not_mutated():
    original = make_state("p1", 100, T0)
    timers = TimerState("u1", [original])
    timers.stop_timer("p1", T0 + 60_000)
    assert original.base_seconds == 100
    assert original.running_since == T0


def test_ensure_creates_idle_record():
    timers = TimerState("u1")
    record = timers.ensure("p9")
    assert record.base_seconds == 0
    assert record.running_since is None
    assert timers.ensure("p9") is record


def test_random_operations_keep_at_most_one_running():
    rng = random.Random(7)
    project_ids = ["p1", "p2", "p3", "p4"]
    timers = TimerState("u1", [make_state(pid) for pid in project_ids])
    now = T0
    for _ in range(500):
        now += rng.randint(0, 120_000)
        pid = rng.choice(project_ids)
        op = rng.choice(["start", "stop", "preset", "adjust", "reset"])
        if op == "start":
            timers.start_timer(pid, now)
        elif op == "stop":
            timers.stop_timer(pid, now)
        elif op == "preset":
            timers.start_with_preset(pid, rng.randint(-100, 5000), now)
        elif op == "adjust":
            timers.adjust_timer(pid, rng.randint(-3000, 3000))
        else:
            timers.reset_timer(pid)
        assert len(timers.running()) <= 1
        assert all(r.base_seconds >= 0 for r in timers.records())
