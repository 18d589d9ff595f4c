from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import at
from focusdebt.db import PersistenceError, SqliteStore
from focusdebt.models import AppSubject, ContextSwitchEvent, DomainSubject, UsageInterval

CODE = AppSubject("code")
GITHUB = DomainSubject("firefox", "github.com")
REDDIT = DomainSubject("firefox", "reddit.com")


@pytest.fixture
def store(tmp_path):
    with SqliteStore(tmp_path / "data" / "focusdebt.db") as store:
        yield store


def test_session_records_round_trip(store) -> None:
    session_id = store.open_session("morning", at(0))
    intervals = [
        UsageInterval(CODE, at(0), at(90.5), True),
        UsageInterval(REDDIT, at(90.5), at(120), False),
        UsageInterval(GITHUB, at(120), at(180), True),
    ]
    switches = [
        ContextSwitchEvent(at(90.5), CODE, REDDIT),
        ContextSwitchEvent(at(120), REDDIT, GITHUB, recovery_time=timedelta(seconds=29.5)),
    ]
    store.append_intervals(session_id, intervals)
    store.append_switches(session_id, switches)
    store.close_session(session_id, at(180))

    loaded = store.load_session("morning")

    assert loaded.id == session_id
    assert loaded.start == at(0)
    assert loaded.end == at(180)
    assert loaded.intervals == intervals
    assert loaded.switches == switches
    assert loaded.switches[0].recovery_time is None


def test_load_session_by_id_and_missing_keys(store) -> None:
    session_id = store.open_session("afternoon", at(0))

    assert store.load_session(session_id).name == "afternoon"
    assert store.load_session("nope") is None
    assert store.load_session(9999) is None


def test_duplicate_session_name_is_rejected(store) -> None:
    store.open_session("standup", at(0))

    with pytest.raises(PersistenceError, match="already exists"):
        store.open_session("standup", at(10))
    assert store.session_name_exists("standup")
    assert not store.session_name_exists("retro")


def test_closing_unknown_session_fails(store) -> None:
    with pytest.raises(PersistenceError):
        store.close_session(42, at(0))


def test_appends_accumulate_across_flushes(store) -> None:
    session_id = store.open_session("long", at(0))
    store.append_intervals(session_id, [UsageInterval(CODE, at(0), at(10), True)])
    store.append_intervals(session_id, [])
    store.append_intervals(session_id, [UsageInterval(REDDIT, at(10), at(12), False)])

    loaded = store.load_session(session_id)
    assert [i.subject for i in loaded.intervals] == [CODE, REDDIT]


def test_sessions_are_listed_newest_first(store) -> None:
    store.open_session("first", at(0))
    store.open_session("second", at(3600))

    assert [s.name for s in store.list_sessions()] == ["second", "first"]
    assert store.list_sessions()[0].intervals == []
    assert store.latest_session().name == "second"


def test_latest_session_of_empty_database(store) -> None:
    assert store.latest_session() is None
    assert store.list_sessions() == []


def test_policy_entries(store) -> None:
    assert store.add_policy_entry("focus_apps", "code") is True
    assert store.add_policy_entry("focus_apps", "code") is False
    store.add_policy_entry("focus_apps", "blender")
    store.add_policy_entry("focus_sites", "github.com")

    assert store.list_policy_entries("focus_apps") == ["blender", "code"]
    assert store.list_policy_entries("focus_sites") == ["github.com"]
    assert store.list_policy_entries("ignored_apps") == []
    assert store.remove_policy_entry("focus_apps", "code") is True
    assert store.remove_policy_entry("focus_apps", "code") is False


def test_cleanup_removes_abandoned_empty_sessions(store) -> None:
    abandoned = store.open_session("abandoned", at(0))
    kept_open = store.open_session("crashed", at(10))
    store.append_intervals(kept_open, [UsageInterval(CODE, at(10), at(20), True)])
    closed = store.open_session("done", at(30))
    store.close_session(closed, at(40))

    assert store.cleanup() == 1
    assert store.load_session(abandoned) is None
    assert {s.name for s in store.list_sessions()} == {"crashed", "done"}


def test_clear_all_keeps_policy_entries(store) -> None:
    session_id = store.open_session("work", at(0))
    store.append_intervals(session_id, [UsageInterval(CODE, at(0), at(1), True)])
    store.add_policy_entry("ignored_apps", "1password")

    store.clear_all()
    store.vacuum()

    assert store.list_sessions() == []
    assert store.list_policy_entries("ignored_apps") == ["1password"]
