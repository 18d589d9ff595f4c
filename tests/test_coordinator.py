from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest

from conftest import CyclingStrategy, MemoryStore, scripted_probe
from focusdebt.config import ConfigError, TrackerSettings
from focusdebt.coordinator import Coordinator, CoordinatorError, CoordinatorState
from focusdebt.db import PersistenceError
from focusdebt.models import FocusSet
from focusdebt.probe import PlatformProbe


def fast_settings() -> TrackerSettings:
    return TrackerSettings(
        tracking_interval=timedelta(milliseconds=10),
        save_interval=timedelta(seconds=10),
        probe_timeout=timedelta(milliseconds=200),
    )


def wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.01)
    raise AssertionError("condition was not met in time")


def spans(intervals):
    return [(i.subject, i.start, i.end) for i in intervals]


@pytest.fixture
def cycling_coordinator(memory_store, focus_set):
    coordinator = Coordinator(
        memory_store,
        fast_settings(),
        focus_set,
        probe=PlatformProbe([CyclingStrategy(["code", "slack"])]),
    )
    yield coordinator
    if coordinator.state is CoordinatorState.RUNNING:
        memory_store.fail = False
        coordinator.stop()


def test_start_and_stop_persist_the_session(memory_store, focus_set) -> None:
    coordinator = Coordinator(
        memory_store, fast_settings(), focus_set, probe=scripted_probe("code")
    )

    session = coordinator.start("  deep work  ")
    assert session.name == "deep work"
    assert coordinator.state is CoordinatorState.RUNNING
    assert memory_store.sessions[session.id]["name"] == "deep work"

    wait_for(lambda: coordinator.summary().total_duration > timedelta(0))
    stopped = coordinator.stop()

    assert coordinator.state is CoordinatorState.STOPPED
    assert stopped.end is not None
    assert memory_store.sessions[session.id]["end"] == stopped.end
    assert memory_store.close_calls == 1
    assert spans(memory_store.intervals[session.id]) == spans(stopped.intervals)
    assert len(stopped.intervals) == 1
    assert stopped.intervals[0].is_focus is True
    assert coordinator.summary().efficiency_pct == 100


def test_blank_session_name_is_rejected(memory_store, focus_set) -> None:
    coordinator = Coordinator(memory_store, fast_settings(), focus_set, probe=scripted_probe("code"))

    with pytest.raises(CoordinatorError):
        coordinator.start("   ")
    assert memory_store.sessions == {}


def test_missing_policy_is_a_config_error(memory_store) -> None:
    coordinator = Coordinator(memory_store, fast_settings(), None, probe=scripted_probe("code"))

    with pytest.raises(ConfigError):
        coordinator.start("work")
    assert memory_store.sessions == {}


def test_empty_policy_only_warns(memory_store, caplog) -> None:
    coordinator = Coordinator(
        memory_store, fast_settings(), FocusSet(), probe=scripted_probe("code")
    )
    with caplog.at_level("WARNING", logger="focusdebt.coordinator"):
        coordinator.start("work")
    try:
        assert "all time counts as distraction" in caplog.text
    finally:
        coordinator.stop()


def test_no_available_strategy_refuses_to_start(memory_store, focus_set) -> None:
    coordinator = Coordinator(
        memory_store, fast_settings(), focus_set, probe=scripted_probe("code", available=False)
    )

    with pytest.raises(CoordinatorError, match="no window detection strategy"):
        coordinator.start("work")
    assert coordinator.state is CoordinatorState.STOPPED


def test_coordinator_cannot_be_started_twice(cycling_coordinator) -> None:
    cycling_coordinator.start("work")

    with pytest.raises(CoordinatorError):
        cycling_coordinator.start("again")


def test_stop_before_start_is_an_error(memory_store, focus_set) -> None:
    coordinator = Coordinator(memory_store, fast_settings(), focus_set, probe=scripted_probe("code"))

    with pytest.raises(CoordinatorError):
        coordinator.stop()


def test_failed_flush_keeps_records_for_retry(cycling_coordinator, memory_store) -> None:
    session = cycling_coordinator.start("work")
    wait_for(lambda: len(cycling_coordinator.snapshot().intervals) >= 4)

    memory_store.fail = True
    assert cycling_coordinator.flush() is False
    assert cycling_coordinator.failed_flushes == 1
    assert memory_store.intervals[session.id] == []

    memory_store.fail = False
    assert cycling_coordinator.flush() is True
    assert len(memory_store.intervals[session.id]) >= 3
    assert len(memory_store.switches[session.id]) >= 3

    stopped = cycling_coordinator.stop()
    assert spans(memory_store.intervals[session.id]) == spans(stopped.intervals)
    assert len(memory_store.switches[session.id]) == len(stopped.switches)


def test_final_flush_failure_raises_and_can_be_retried(cycling_coordinator, memory_store) -> None:
    session = cycling_coordinator.start("work")
    wait_for(lambda: len(cycling_coordinator.snapshot().intervals) >= 3)

    memory_store.fail = True
    with pytest.raises(PersistenceError):
        cycling_coordinator.stop()

    assert cycling_coordinator.state is CoordinatorState.STOPPED
    assert memory_store.close_calls == 0
    assert memory_store.intervals[session.id] == []

    memory_store.fail = False
    assert cycling_coordinator.retry_flush() is True
    assert memory_store.close_calls == 1
    stopped = cycling_coordinator.snapshot()
    assert spans(memory_store.intervals[session.id]) == spans(stopped.intervals)


def test_retry_flush_requires_a_stopped_coordinator(cycling_coordinator) -> None:
    cycling_coordinator.start("work")

    with pytest.raises(CoordinatorError):
        cycling_coordinator.retry_flush()


def test_concurrent_stops_close_the_session_once(cycling_coordinator, memory_store) -> None:
    cycling_coordinator.start("work")
    wait_for(lambda: len(cycling_coordinator.snapshot().intervals) >= 2)

    results = []
    barrier = threading.Barrier(4)

    def stop() -> None:
        barrier.wait()
        results.append(cycling_coordinator.stop())

    threads = [threading.Thread(target=stop) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert cycling_coordinator.state is CoordinatorState.STOPPED
    assert memory_store.close_calls == 1
    assert len(results) == 4
    assert len({result.end for result in results}) == 1


def test_stopped_session_switches_have_recovery(cycling_coordinator) -> None:
    cycling_coordinator.start("work")
    wait_for(lambda: len(cycling_coordinator.snapshot().switches) >= 4)
    stopped = cycling_coordinator.stop()

    switches = stopped.switches
    into_focus = [s for s in switches if s.to_subject.label == "code"]
    out_of_focus = [s for s in switches if s.to_subject.label == "slack"]
    assert into_focus and out_of_focus
    assert all(s.recovery_time is None for s in out_of_focus)
    assert all(s.recovery_time is not None for s in into_focus)


def test_wait_returns_once_stopped(cycling_coordinator) -> None:
    cycling_coordinator.start("work")
    assert cycling_coordinator.wait(timedelta(milliseconds=20)) is False

    cycling_coordinator.stop()
    assert cycling_coordinator.wait(timedelta(milliseconds=20)) is True


class UnopenableStore(MemoryStore):
    def open_session(self, name, start=None):
        raise PersistenceError("database is locked")


def test_failed_session_open_leaves_nothing_to_flush(focus_set) -> None:
    coordinator = Coordinator(
        UnopenableStore(), fast_settings(), focus_set, probe=scripted_probe("code")
    )

    with pytest.raises(PersistenceError):
        coordinator.start("deep work")

    assert coordinator.state is CoordinatorState.STOPPED
    assert coordinator.session_id is None
    assert coordinator.retry_flush() is True
    assert coordinator.stop() is None
