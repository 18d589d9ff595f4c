"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable, Optional

from .models import Session, SessionSummary, SubjectTotal

TOP_N = 5


class SummaryPrinter:
    """Render human-readable session summaries in the console."""

    def print_session_summary(self, session: Session, summary: SessionSummary) -> None:
        print(f"Session: {session.name}")
        print("-" * 40)
        print(f"Started:         {session.start.strftime('%Y-%m-%d %H:%M')}")
        if session.end is not None:
            print(f"Ended:           {session.end.strftime('%Y-%m-%d %H:%M')}")
        else:
            print("Ended:           (still running)")
        print(f"Total time:      {format_duration(summary.total_duration)}")
        print(f"Focus time:      {format_duration(summary.focus_duration)}")
        print(f"Distraction:     {format_duration(summary.distraction_duration)}")
        print(f"Efficiency:      {summary.efficiency_pct}%")
        print(f"Deep focus:      {_deep_focus_label(summary)}")
        print(f"Context switches: {summary.switch_count}")
        if summary.avg_recovery is not None:
            print(f"Avg recovery:    {format_duration(summary.avg_recovery)}")

        _print_totals("Top apps:", summary.per_app)
        _print_totals("Top sites:", summary.per_domain)

    def print_session_list(self, sessions: Iterable[Session]) -> None:
        sessions = list(sessions)
        if not sessions:
            print("No sessions recorded yet.")
            return
        for session in sessions:
            start = session.start.strftime("%b %d, %H:%M")
            if session.end is None:
                status = "running"
            else:
                status = format_duration(session.end - session.start)
            print(f"  {session.name:<30} {start:<14} {status}")


def _deep_focus_label(summary: SessionSummary) -> str:
    if not summary.deep_focus:
        return f"no (longest run {format_duration(summary.longest_focus_run)})"
    return f"yes ({summary.deep_focus_runs} run(s), longest {format_duration(summary.longest_focus_run)})"


def _print_totals(title: str, totals: Iterable[SubjectTotal]) -> None:
    totals = list(totals)[:TOP_N]
    if not totals:
        return
    print()
    print(title)
    for total in totals:
        marker = "focus" if total.is_focus else "distraction"
        print(f"  {total.subject.label[:30]:<30} {format_duration(total.duration)}  {marker}")


def format_duration(value: Optional[timedelta]) -> str:
    if value is None:
        return "--:--:--"
    total_seconds = int(round(value.total_seconds()))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def render_share_report(session: Session, summary: SessionSummary) -> str:
    """A compact plain-text summary meant to be pasted elsewhere."""
    lines = [
        f"FocusDebt: {session.name} ({session.start.strftime('%Y-%m-%d')})",
        f"Focus {format_duration(summary.focus_duration)} of "
        f"{format_duration(summary.total_duration)} ({summary.efficiency_pct}% efficiency)",
        f"Context switches: {summary.switch_count}",
        f"Avg recovery: {format_duration(summary.avg_recovery)}",
        f"Deep focus: {_deep_focus_label(summary)}",
    ]
    focus = [total for total in summary.per_app if total.is_focus][:3]
    if focus:
        lines.append("Focused in: " + ", ".join(total.subject.label for total in focus))
    distractions = [
        total for total in (*summary.per_app, *summary.per_domain) if not total.is_focus
    ]
    if distractions:
        worst = max(distractions, key=lambda total: total.duration)
        lines.append(f"Biggest distraction: {worst.subject.label} ({format_duration(worst.duration)})")
    return "\n".join(lines)
