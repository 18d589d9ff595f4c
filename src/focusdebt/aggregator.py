"""Folds session intervals and switches into summary metrics."""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable, Sequence

from .models import (
    AppSubject,
    ContextSwitchEvent,
    DomainSubject,
    Session,
    SessionSummary,
    Subject,
    SubjectTotal,
    UsageInterval,
)

DEFAULT_DEEP_FOCUS_THRESHOLD = timedelta(minutes=30)


def summarize(
    intervals: Sequence[UsageInterval],
    switches: Sequence[ContextSwitchEvent],
    *,
    deep_focus_threshold: timedelta = DEFAULT_DEEP_FOCUS_THRESHOLD,
    max_run_gap: timedelta = timedelta(0),
) -> SessionSummary:
    """Compute a :class:`SessionSummary`.

    Pure and deterministic: the inputs are not modified and the same inputs
    always produce an equal summary, so this can be called repeatedly on an
    in-progress session.

    Focus intervals separated by at most ``max_run_gap`` of unattributed time
    form one run for deep-focus detection; any distraction interval ends a run.
    """
    ordered = sorted(intervals, key=lambda interval: interval.start)

    total = sum((interval.duration for interval in ordered), timedelta(0))
    focus = sum((interval.duration for interval in ordered if interval.is_focus), timedelta(0))

    runs = list(_focus_runs(ordered, max_run_gap))
    deep_runs = [run for run in runs if run >= deep_focus_threshold]

    recoveries = [
        switch.recovery_time for switch in switches if switch.recovery_time is not None
    ]
    avg_recovery = (
        sum(recoveries, timedelta(0)) / len(recoveries) if recoveries else None
    )

    return SessionSummary(
        total_duration=total,
        focus_duration=focus,
        efficiency_pct=efficiency(focus, total),
        deep_focus=bool(deep_runs),
        switch_count=len(switches),
        avg_recovery=avg_recovery,
        per_app=_totals(interval for interval in ordered if isinstance(interval.subject, AppSubject)),
        per_domain=_totals(
            interval for interval in ordered if isinstance(interval.subject, DomainSubject)
        ),
        deep_focus_runs=len(deep_runs),
        longest_focus_run=max(runs, default=timedelta(0)),
    )


def summarize_session(
    session: Session,
    *,
    deep_focus_threshold: timedelta = DEFAULT_DEEP_FOCUS_THRESHOLD,
    max_run_gap: timedelta = timedelta(0),
) -> SessionSummary:
    return summarize(
        session.intervals,
        session.switches,
        deep_focus_threshold=deep_focus_threshold,
        max_run_gap=max_run_gap,
    )


def efficiency(focus: timedelta, total: timedelta) -> int:
    """Focus share of ``total`` as a whole percentage, rounding halves up."""
    total_seconds = total.total_seconds()
    if total_seconds <= 0:
        return 0
    pct = int(100 * focus.total_seconds() / total_seconds + 0.5)
    return max(0, min(100, pct))


def _focus_runs(ordered: Sequence[UsageInterval], max_run_gap: timedelta) -> Iterable[timedelta]:
    run = timedelta(0)
    run_end = None
    for interval in ordered:
        if not interval.is_focus:
            if run_end is not None:
                yield run
            run, run_end = timedelta(0), None
            continue
        if run_end is not None and interval.start - run_end > max_run_gap:
            yield run
            run = timedelta(0)
        run += interval.duration
        run_end = interval.end
    if run_end is not None:
        yield run


def _totals(intervals: Iterable[UsageInterval]) -> tuple[SubjectTotal, ...]:
    # dicts keep first-occurrence order, and sorted() is stable, which breaks
    # duration ties by earliest appearance.
    durations: dict[Subject, timedelta] = {}
    focus_flags: dict[Subject, bool] = {}
    for interval in intervals:
        durations[interval.subject] = durations.get(interval.subject, timedelta(0)) + interval.duration
        focus_flags.setdefault(interval.subject, interval.is_focus)
    ranked = sorted(durations.items(), key=lambda item: item[1], reverse=True)
    return tuple(
        SubjectTotal(subject=subject, duration=duration, is_focus=focus_flags[subject])
        for subject, duration in ranked
    )
