from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Optional, Sequence, Union

import pytest

from focusdebt.db import PersistenceError
from focusdebt.models import FocusSet, RawWindow, Sample
from focusdebt.probe import NoActiveWindow, PlatformProbe, ProbeError, ProbeStrategy

BASE = datetime(2024, 5, 6, 9, 0, 0)


def at(seconds: float) -> datetime:
    return BASE + timedelta(seconds=seconds)


def sample(seconds: float, app: str, domain: Optional[str] = None, title: str = "") -> Sample:
    return Sample(timestamp=at(seconds), app_name=app, window_title=title, domain=domain)


class ScriptedStrategy(ProbeStrategy):
    """Replays a fixed list of windows, then repeats the last entry."""

    name = "scripted"

    def __init__(self, script: Sequence[Union[RawWindow, ProbeError, str]], available: bool = True):
        self._script = list(script)
        self._available = available
        self._lock = threading.Lock()
        self.calls = 0

    def is_available(self) -> bool:
        return self._available

    def query(self, timeout: float) -> RawWindow:
        with self._lock:
            index = min(self.calls, len(self._script) - 1)
            self.calls += 1
            item = self._script[index]
        if isinstance(item, ProbeError):
            raise item
        if isinstance(item, str):
            return RawWindow(app_name=item, window_title=f"{item} window")
        return item


class CyclingStrategy(ProbeStrategy):
    name = "cycling"

    def __init__(self, apps: Sequence[str]):
        self._apps = list(apps)
        self.calls = 0

    def query(self, timeout: float) -> RawWindow:
        app = self._apps[self.calls % len(self._apps)]
        self.calls += 1
        return RawWindow(app_name=app, window_title="")


class MemoryStore:
    """In-memory persistence collaborator that can be told to fail."""

    def __init__(self) -> None:
        self.fail = False
        self.sessions: dict[int, dict] = {}
        self.intervals: dict[int, list] = {}
        self.switches: dict[int, list] = {}
        self.close_calls = 0
        self._next_id = 1

    def _check(self) -> None:
        if self.fail:
            raise PersistenceError("database is locked")

    def open_session(self, name, start=None):
        session_id = self._next_id
        self._next_id += 1
        self.sessions[session_id] = {"name": name, "start": start, "end": None}
        self.intervals[session_id] = []
        self.switches[session_id] = []
        return session_id

    def close_session(self, session_id, end_time):
        self._check()
        self.close_calls += 1
        self.sessions[session_id]["end"] = end_time

    def append_intervals(self, session_id, intervals):
        self._check()
        self.intervals[session_id].extend(intervals)

    def append_switches(self, session_id, switches):
        self._check()
        self.switches[session_id].extend(switches)


@pytest.fixture
def focus_set() -> FocusSet:
    return FocusSet.build(
        focus_apps=["code", "nvim"],
        focus_domains=["github.com", "docs.python.org"],
        ignored_apps=["1password"],
    )


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


def scripted_probe(*script, available: bool = True) -> PlatformProbe:
    return PlatformProbe([ScriptedStrategy(script, available=available)])


def failing_probe() -> PlatformProbe:
    return scripted_probe(NoActiveWindow("nothing focused"))
