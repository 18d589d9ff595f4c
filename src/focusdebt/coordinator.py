"""Lifecycle of one tracked session: sampling, periodic flushes and shutdown."""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol, Sequence

from .aggregator import summarize
from .config import ConfigError, TrackerSettings
from .db import PersistenceError
from .models import ContextSwitchEvent, FocusSet, Sample, Session, SessionSummary, UsageInterval
from .probe import PlatformProbe, ProbeError
from .sampler import ActivitySampler
from .tracker import SessionStateMachine, TrackerState

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    def open_session(self, name: str, start: Optional[datetime] = None) -> int: ...

    def close_session(self, session_id: int, end_time: datetime) -> None: ...

    def append_intervals(self, session_id: int, intervals: Sequence[UsageInterval]) -> None: ...

    def append_switches(self, session_id: int, switches: Sequence[ContextSwitchEvent]) -> None: ...


class CoordinatorState(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class CoordinatorError(RuntimeError):
    pass


class Coordinator:
    """Owns the sampler and flush threads and the in-progress session.

    The state machine is only touched while holding ``_lock``; the sampler
    thread and the flush thread both go through it, so a flush always sees
    whole ticks.
    """

    def __init__(
        self,
        store: SessionStore,
        settings: TrackerSettings,
        focus_set: Optional[FocusSet],
        *,
        probe: Optional[PlatformProbe] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.store = store
        self.settings = settings
        self.focus_set = focus_set
        self.probe = probe if probe is not None else PlatformProbe(
            command_timeout=settings.effective_probe_timeout.total_seconds()
        )
        self._clock = clock

        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._lifecycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

        self._state = CoordinatorState.IDLE
        self._session: Optional[Session] = None
        self._machine: Optional[SessionStateMachine] = None
        self._sampler: Optional[ActivitySampler] = None
        self._flushed_intervals = 0
        self._flushed_switches = 0
        self._session_closed = False
        self._flush_count = 0
        self.failed_flushes = 0
        self.last_summary: Optional[SessionSummary] = None

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def session_id(self) -> Optional[int]:
        return self._session.id if self._session else None

    def start(self, session_name: str) -> Session:
        """Validate inputs, open the session and start the background threads."""
        with self._lifecycle_lock:
            if self._state is not CoordinatorState.IDLE:
                raise CoordinatorError(f"coordinator is already {self._state.value}")
            self._state = CoordinatorState.STARTING
            try:
                session = self._prepare(session_name)
            except Exception:
                self._state = CoordinatorState.STOPPED
                raise

            self._threads = [
                threading.Thread(
                    target=self._sampler.run_until_stopped,
                    args=(self._stop_event,),
                    name="focusdebt-sampler",
                    daemon=True,
                ),
                threading.Thread(
                    target=self._flush_loop,
                    name="focusdebt-flush",
                    daemon=True,
                ),
            ]
            for thread in self._threads:
                thread.start()
            self._state = CoordinatorState.RUNNING
            logger.info("Tracking session %r (id=%s) started.", session.name, session.id)
            return replace(session)

    def _prepare(self, session_name: str) -> Session:
        name = (session_name or "").strip()
        if not name:
            raise CoordinatorError("a session name is required")
        if self.focus_set is None:
            raise ConfigError("no classification policy was supplied")
        if self.focus_set.is_empty():
            logger.warning("No focus apps or sites configured; all time counts as distraction.")
        if not self.probe.available_strategies():
            raise CoordinatorError("no window detection strategy is available on this system")

        start = self._clock()
        session_id = self.store.open_session(name, start)
        self._session = Session(id=session_id, name=name, start=start)
        self._machine = SessionStateMachine(
            self.focus_set, gap_tolerance=self.settings.gap_tolerance
        )
        self._sampler = ActivitySampler(
            self.probe,
            interval=self.settings.tracking_interval,
            probe_timeout=self.settings.effective_probe_timeout,
            on_sample=self._on_sample,
            on_gap=self._on_gap,
            clock=self._clock,
        )
        return self._session

    def _on_sample(self, sample: Sample) -> None:
        with self._lock:
            if self._machine.state is TrackerState.CLOSED:
                return
            self._machine.observe(sample)

    def _on_gap(self, timestamp: datetime, error: ProbeError) -> None:
        with self._lock:
            if self._machine.state is TrackerState.CLOSED:
                return
            self._machine.observe_gap(timestamp)

    def _flush_loop(self) -> None:
        interval = self.settings.save_interval.total_seconds()
        while not self._stop_event.wait(interval):
            try:
                self.flush()
            except Exception:
                logger.exception("Periodic flush failed")

    def flush(self) -> bool:
        """Hand newly closed intervals and switches to the store.

        Returns False when the store rejected the batch; the records stay
        queued in memory and are retried by the next flush.
        """
        if self._machine is None:
            return True
        with self._flush_lock:
            with self._lock:
                intervals = [replace(i) for i in self._machine.intervals[self._flushed_intervals:]]
                switches = [replace(s) for s in self._machine.switches[self._flushed_switches:]]
                self.last_summary = self._summarize_locked()

            session_id = self._session.id
            try:
                if intervals:
                    self.store.append_intervals(session_id, intervals)
                    self._flushed_intervals += len(intervals)
                if switches:
                    self.store.append_switches(session_id, switches)
                    self._flushed_switches += len(switches)
            except PersistenceError as exc:
                self.failed_flushes += 1
                logger.warning(
                    "Flush failed (%d so far); keeping %d intervals and %d switches in memory: %s",
                    self.failed_flushes,
                    len(intervals),
                    len(switches),
                    exc,
                )
                return False

            self._flush_count += 1
            logger.debug(
                "Flushed %d intervals and %d switches.", len(intervals), len(switches)
            )
            if self._flush_count % 10 == 0 and self.last_summary is not None:
                logger.info(
                    "Tracker stats: %d switches, %d%% focus so far.",
                    self.last_summary.switch_count,
                    self.last_summary.efficiency_pct,
                )
            return True

    def summary(self) -> SessionSummary:
        """Summary of everything recorded so far, including the open interval."""
        if self._machine is None:
            raise CoordinatorError("no session has been started")
        with self._lock:
            return self._summarize_locked()

    def snapshot(self) -> Session:
        if self._machine is None or self._session is None:
            raise CoordinatorError("no session has been started")
        with self._lock:
            intervals, switches = self._machine.snapshot(now=self._snapshot_time())
            return replace(self._session, intervals=intervals, switches=switches)

    def _summarize_locked(self) -> SessionSummary:
        intervals, switches = self._machine.snapshot(now=self._snapshot_time())
        return summarize(
            intervals,
            switches,
            deep_focus_threshold=self.settings.deep_focus_threshold,
            max_run_gap=self.settings.deep_focus_gap,
        )

    def _snapshot_time(self) -> Optional[datetime]:
        if self._machine.state is TrackerState.CLOSED:
            return None
        return self._clock()

    def stop(self) -> Optional[Session]:
        """Stop sampling, close the open interval and run the final flush.

        Only the first call does the work; later calls return the stopped
        session. Raises :class:`PersistenceError` if the final flush fails,
        after the coordinator has reached ``STOPPED``; see :meth:`retry_flush`.
        """
        with self._lifecycle_lock:
            if self._state in (CoordinatorState.STOPPING, CoordinatorState.STOPPED):
                return self.snapshot() if self._machine is not None else None
            if self._state is not CoordinatorState.RUNNING:
                raise CoordinatorError(f"cannot stop a coordinator that is {self._state.value}")
            self._state = CoordinatorState.STOPPING
            logger.info("Stopping tracking session %r.", self._session.name)

            self._stop_event.set()
            join_timeout = (
                self.settings.tracking_interval + self.settings.effective_probe_timeout
            ).total_seconds() + 1.0
            for thread in self._threads:
                thread.join(timeout=join_timeout)
                if thread.is_alive():
                    logger.warning("%s did not exit within %.1fs", thread.name, join_timeout)

            end = self._clock()
            with self._lock:
                self._machine.stop(end)
                self._session.end = end

            ok = self._final_flush()
            self._state = CoordinatorState.STOPPED
            logger.info("Tracking session %r stopped.", self._session.name)
            session = self.snapshot()

        if not ok:
            raise PersistenceError(
                f"final flush for session {session.name!r} failed after "
                f"{self.failed_flushes} attempts; call retry_flush() to try again"
            )
        return session

    def retry_flush(self) -> bool:
        """Retry persisting a stopped session whose final flush failed."""
        if self._state is not CoordinatorState.STOPPED:
            raise CoordinatorError("retry_flush is only valid after stop()")
        return self._final_flush()

    def _final_flush(self) -> bool:
        if self._session is None:
            # The session row was never opened; there is nothing to persist.
            return True
        if not self.flush():
            return False
        if not self._session_closed:
            try:
                self.store.close_session(self._session.id, self._session.end)
            except PersistenceError as exc:
                self.failed_flushes += 1
                logger.warning("Could not mark session %s closed: %s", self._session.id, exc)
                return False
            self._session_closed = True
        return True

    def wait(self, timeout: Optional[timedelta] = None) -> bool:
        """Block until the coordinator has been stopped."""
        seconds = timeout.total_seconds() if timeout is not None else None
        return self._stop_event.wait(seconds)
