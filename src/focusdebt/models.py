"""Domain models for tracked focus sessions."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional, Union


@dataclass(frozen=True, slots=True)
class RawWindow:
    """Identity of the focused window as reported by a probe strategy."""

    app_name: str
    window_title: str


@dataclass(frozen=True, slots=True)
class AppSubject:
    app_name: str

    @property
    def label(self) -> str:
        return self.app_name


@dataclass(frozen=True, slots=True)
class DomainSubject:
    """A site viewed in a browser, identified by (browser, domain)."""

    browser: str
    domain: str

    @property
    def label(self) -> str:
        return self.domain


Subject = Union[AppSubject, DomainSubject]


@dataclass(frozen=True, slots=True)
class Sample:
    """One normalized poll of the focused window."""

    timestamp: datetime
    app_name: str
    window_title: str
    domain: Optional[str] = None

    @property
    def subject(self) -> Subject:
        if self.domain:
            return DomainSubject(browser=self.app_name, domain=self.domain)
        return AppSubject(app_name=self.app_name)


@dataclass(slots=True)
class UsageInterval:
    """A contiguous block of time attributed to a single subject."""

    subject: Subject
    start: datetime
    end: datetime
    is_focus: bool

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError("interval end must not precede its start")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


@dataclass(slots=True)
class ContextSwitchEvent:
    timestamp: datetime
    from_subject: Optional[Subject]
    to_subject: Subject
    recovery_time: Optional[timedelta] = None


@dataclass(slots=True)
class Session:
    """A named tracking session and everything recorded during it."""

    name: str
    start: datetime
    id: Optional[int] = None
    end: Optional[datetime] = None
    intervals: list[UsageInterval] = field(default_factory=list)
    switches: list[ContextSwitchEvent] = field(default_factory=list)

    @property
    def is_closed(self) -> bool:
        return self.end is not None


class Classification(enum.Enum):
    FOCUS = "focus"
    DISTRACTION = "distraction"
    IGNORED = "ignored"


def normalize_domain(value: str) -> str:
    domain = value.strip().lower().rstrip(".")
    if domain.startswith("www."):
        domain = domain[4:]
    return domain


@dataclass(frozen=True, slots=True)
class FocusSet:
    """Classification policy: which apps and sites count as focus or are ignored."""

    focus_apps: frozenset[str] = frozenset()
    focus_domains: frozenset[str] = frozenset()
    ignored_apps: frozenset[str] = frozenset()

    @classmethod
    def build(
        cls,
        focus_apps: Iterable[str] = (),
        focus_domains: Iterable[str] = (),
        ignored_apps: Iterable[str] = (),
    ) -> "FocusSet":
        return cls(
            focus_apps=frozenset(app.strip().lower() for app in focus_apps if app.strip()),
            focus_domains=frozenset(
                normalize_domain(domain) for domain in focus_domains if domain.strip()
            ),
            ignored_apps=frozenset(app.strip().lower() for app in ignored_apps if app.strip()),
        )

    def is_empty(self) -> bool:
        return not (self.focus_apps or self.focus_domains)

    def classify(self, subject: Subject) -> Classification:
        if isinstance(subject, DomainSubject):
            app_key = subject.browser.lower()
            if app_key in self.ignored_apps:
                return Classification.IGNORED
            if self._matches_domain(subject.domain) or app_key in self.focus_apps:
                return Classification.FOCUS
            return Classification.DISTRACTION

        app_key = subject.app_name.lower()
        if app_key in self.ignored_apps:
            return Classification.IGNORED
        if app_key in self.focus_apps:
            return Classification.FOCUS
        return Classification.DISTRACTION

    def _matches_domain(self, domain: str) -> bool:
        candidate = normalize_domain(domain)
        for focus_domain in self.focus_domains:
            if candidate == focus_domain or candidate.endswith("." + focus_domain):
                return True
        return False


@dataclass(frozen=True, slots=True)
class SubjectTotal:
    subject: Subject
    duration: timedelta
    is_focus: bool


@dataclass(frozen=True, slots=True)
class SessionSummary:
    """Metrics derived from a session's intervals and switches."""

    total_duration: timedelta
    focus_duration: timedelta
    efficiency_pct: int
    deep_focus: bool
    switch_count: int
    avg_recovery: Optional[timedelta]
    per_app: tuple[SubjectTotal, ...]
    per_domain: tuple[SubjectTotal, ...]
    deep_focus_runs: int = 0
    longest_focus_run: timedelta = timedelta(0)

    @property
    def distraction_duration(self) -> timedelta:
        return self.total_duration - self.focus_duration
