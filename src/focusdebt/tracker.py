"""Turns a stream of samples into usage intervals and context switches."""

from __future__ import annotations

import enum
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from .models import (
    Classification,
    ContextSwitchEvent,
    FocusSet,
    Sample,
    Subject,
    UsageInterval,
)

logger = logging.getLogger(__name__)


class TrackerState(enum.Enum):
    NO_INTERVAL = "no_interval"
    OPEN_INTERVAL = "open_interval"
    CLOSED = "closed"


class SessionClosedError(RuntimeError):
    pass


class SessionStateMachine:
    """Coalesces samples into intervals and records switches between subjects.

    Each call to :meth:`observe` or :meth:`observe_gap` is one tick. The
    machine is not thread-safe; callers serialize access.

    Recovery time is measured from the first switch out of a focus subject
    into a distraction until the next switch back into a focus subject, and
    is stored on the switch that restored focus.
    """

    def __init__(self, focus_set: FocusSet, *, gap_tolerance: int = 2) -> None:
        self.focus_set = focus_set
        self.gap_tolerance = gap_tolerance
        self._intervals: list[UsageInterval] = []
        self._switches: list[ContextSwitchEvent] = []
        self._open: Optional[UsageInterval] = None
        self._closed = False
        self._last_subject: Optional[Subject] = None
        self._last_is_focus: Optional[bool] = None
        self._focus_lost_at: Optional[datetime] = None
        self._missed_ticks = 0

    @property
    def state(self) -> TrackerState:
        if self._closed:
            return TrackerState.CLOSED
        if self._open is not None:
            return TrackerState.OPEN_INTERVAL
        return TrackerState.NO_INTERVAL

    @property
    def intervals(self) -> list[UsageInterval]:
        """Closed intervals, in chronological order."""
        return self._intervals

    @property
    def switches(self) -> list[ContextSwitchEvent]:
        return self._switches

    @property
    def open_interval(self) -> Optional[UsageInterval]:
        return self._open

    def observe(self, sample: Sample) -> None:
        self._ensure_open()
        self._missed_ticks = 0
        subject = sample.subject
        timestamp = sample.timestamp
        classification = self.focus_set.classify(subject)

        if classification is Classification.IGNORED:
            # Ended at the previous tick; ignored time is attributed to nothing.
            self._close_open()
            return

        is_focus = classification is Classification.FOCUS
        current = self._open
        if current is not None and current.subject == subject:
            if timestamp > current.end:
                current.end = timestamp
            return

        if current is not None:
            current.end = max(current.end, timestamp)
            self._close_open()

        # A wall clock stepped backwards must not make intervals overlap.
        if self._intervals and self._intervals[-1].end > timestamp:
            timestamp = self._intervals[-1].end

        self._open = UsageInterval(
            subject=subject, start=timestamp, end=timestamp, is_focus=is_focus
        )
        previous = self._last_subject
        if previous is not None and previous != subject:
            self._record_switch(timestamp, previous, subject, is_focus)
        self._last_subject = subject
        self._last_is_focus = is_focus

    def observe_gap(self, timestamp: datetime) -> None:
        """Record a tick on which no window could be observed."""
        self._ensure_open()
        self._missed_ticks += 1
        if self._open is not None and self._missed_ticks > self.gap_tolerance:
            logger.debug(
                "Closing %s after %d missed ticks", self._open.subject, self._missed_ticks
            )
            self._close_open()

    def stop(self, timestamp: datetime) -> None:
        if self._closed:
            return
        if self._open is not None:
            self._open.end = max(self._open.end, timestamp)
            self._close_open()
        self._closed = True

    def snapshot(
        self, now: Optional[datetime] = None
    ) -> tuple[list[UsageInterval], list[ContextSwitchEvent]]:
        """Copies of all intervals, including the open one, and all switches."""
        intervals = [replace(interval) for interval in self._intervals]
        if self._open is not None:
            end = self._open.end
            if now is not None and now > end:
                end = now
            intervals.append(replace(self._open, end=end))
        return intervals, [replace(switch) for switch in self._switches]

    def _record_switch(
        self, timestamp: datetime, previous: Subject, subject: Subject, is_focus: bool
    ) -> None:
        recovery: Optional[timedelta] = None
        if is_focus:
            if self._focus_lost_at is not None:
                recovery = timestamp - self._focus_lost_at
                self._focus_lost_at = None
            elif self._last_is_focus:
                recovery = timedelta(0)
        elif self._last_is_focus and self._focus_lost_at is None:
            self._focus_lost_at = timestamp

        self._switches.append(
            ContextSwitchEvent(
                timestamp=timestamp,
                from_subject=previous,
                to_subject=subject,
                recovery_time=recovery,
            )
        )
        logger.debug("Context switch: %s -> %s", previous.label, subject.label)

    def _close_open(self) -> None:
        if self._open is None:
            return
        self._intervals.append(self._open)
        self._open = None

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError("tracking session has already been stopped")
