"""Serialization of sessions and summaries for export and the API."""

from __future__ import annotations

import csv
import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment

from .models import (
    ContextSwitchEvent,
    DomainSubject,
    Session,
    SessionSummary,
    Subject,
    SubjectTotal,
    UsageInterval,
)
from .reporting import format_duration

EXPORT_FORMATS = ("json", "csv", "html")


def _seconds(value: Optional[timedelta]) -> Optional[float]:
    return value.total_seconds() if value is not None else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def subject_to_dict(subject: Optional[Subject]) -> Optional[Dict[str, Any]]:
    if subject is None:
        return None
    if isinstance(subject, DomainSubject):
        return {"kind": "domain", "app_name": subject.browser, "domain": subject.domain}
    return {"kind": "app", "app_name": subject.app_name, "domain": None}


def interval_to_dict(interval: UsageInterval) -> Dict[str, Any]:
    return {
        "subject": subject_to_dict(interval.subject),
        "start": _iso(interval.start),
        "end": _iso(interval.end),
        "duration_seconds": interval.duration.total_seconds(),
        "is_focus": interval.is_focus,
    }


def switch_to_dict(switch: ContextSwitchEvent) -> Dict[str, Any]:
    return {
        "timestamp": _iso(switch.timestamp),
        "from": subject_to_dict(switch.from_subject),
        "to": subject_to_dict(switch.to_subject),
        "recovery_seconds": _seconds(switch.recovery_time),
    }


def _total_to_dict(total: SubjectTotal) -> Dict[str, Any]:
    return {
        "name": total.subject.label,
        "subject": subject_to_dict(total.subject),
        "seconds": total.duration.total_seconds(),
        "is_focus": total.is_focus,
    }


def summary_to_dict(summary: SessionSummary) -> Dict[str, Any]:
    return {
        "total_seconds": summary.total_duration.total_seconds(),
        "focus_seconds": summary.focus_duration.total_seconds(),
        "distraction_seconds": summary.distraction_duration.total_seconds(),
        "efficiency_pct": summary.efficiency_pct,
        "deep_focus": summary.deep_focus,
        "deep_focus_runs": summary.deep_focus_runs,
        "longest_focus_run_seconds": summary.longest_focus_run.total_seconds(),
        "switch_count": summary.switch_count,
        "avg_recovery_seconds": _seconds(summary.avg_recovery),
        "per_app": [_total_to_dict(total) for total in summary.per_app],
        "per_domain": [_total_to_dict(total) for total in summary.per_domain],
    }


def session_to_dict(session: Session, *, include_records: bool = True) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": session.id,
        "name": session.name,
        "start": _iso(session.start),
        "end": _iso(session.end),
    }
    if include_records:
        payload["intervals"] = [interval_to_dict(i) for i in session.intervals]
        payload["switches"] = [switch_to_dict(s) for s in session.switches]
    return payload


def export_json(session: Session, summary: SessionSummary, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "exported_at": datetime.now().isoformat(),
        "session": session_to_dict(session),
        "summary": summary_to_dict(summary),
    }
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


def export_csv(session: Session, path: Path) -> Path:
    """Write one row per usage interval."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(
            ["session", "start", "end", "duration_seconds", "app_name", "domain", "is_focus"]
        )
        for interval in session.intervals:
            subject = subject_to_dict(interval.subject)
            writer.writerow(
                [
                    session.name,
                    _iso(interval.start),
                    _iso(interval.end),
                    f"{interval.duration.total_seconds():.3f}",
                    subject["app_name"],
                    subject["domain"] or "",
                    "1" if interval.is_focus else "0",
                ]
            )
    return path


_HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>FocusDebt report: {{ session.name }}</title>
<style>
body { font-family: sans-serif; margin: 2em; color: #222; }
.summary { display: flex; flex-wrap: wrap; gap: 1em; margin-bottom: 2em; }
.metric { background: #f4f4f4; border-radius: 6px; padding: 1em; min-width: 10em; }
.metric .value { font-size: 1.5em; font-weight: bold; }
table { border-collapse: collapse; width: 100%; margin-bottom: 2em; }
th, td { border: 1px solid #ddd; padding: 0.4em 0.6em; text-align: left; }
th { background: #eee; }
.focus { color: #1a7f37; }
.distraction { color: #cf222e; }
</style>
</head>
<body>
<h1>{{ session.name }}</h1>
<p>{{ started }}{% if ended %} to {{ ended }}{% else %} (still running){% endif %}</p>
<div class="summary">
{% for label, value in metrics %}
<div class="metric"><div>{{ label }}</div><div class="value">{{ value }}</div></div>
{% endfor %}
</div>
<h2>Usage</h2>
<table>
<tr><th>Start</th><th>End</th><th>App</th><th>Site</th><th>Duration</th><th>Type</th></tr>
{% for row in intervals %}
<tr class="{{ row.kind }}"><td>{{ row.start }}</td><td>{{ row.end }}</td><td>{{ row.app }}</td><td>{{ row.domain }}</td><td>{{ row.duration }}</td><td>{{ row.kind }}</td></tr>
{% endfor %}
</table>
<h2>Context switches</h2>
<table>
<tr><th>Time</th><th>From</th><th>To</th><th>Recovery time</th></tr>
{% for row in switches %}
<tr><td>{{ row.time }}</td><td>{{ row.source }}</td><td>{{ row.target }}</td><td>{{ row.recovery }}</td></tr>
{% endfor %}
</table>
</body>
</html>
"""

_html_env = Environment(autoescape=True, trim_blocks=True, lstrip_blocks=True)


def _clock(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value is not None else ""


def export_html(session: Session, summary: SessionSummary, path: Path) -> Path:
    """Write a standalone HTML report with the summary and every record."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    metrics = [
        ("Focus time", format_duration(summary.focus_duration)),
        ("Distraction time", format_duration(summary.distraction_duration)),
        ("Context switches", summary.switch_count),
        ("Deep focus runs", summary.deep_focus_runs),
        ("Focus efficiency", f"{summary.efficiency_pct}%"),
        ("Avg recovery", format_duration(summary.avg_recovery)),
    ]
    intervals = []
    for interval in session.intervals:
        subject = subject_to_dict(interval.subject)
        intervals.append(
            {
                "start": _clock(interval.start),
                "end": _clock(interval.end),
                "app": subject["app_name"],
                "domain": subject["domain"] or "",
                "duration": format_duration(interval.duration),
                "kind": "focus" if interval.is_focus else "distraction",
            }
        )
    switches = [
        {
            "time": _clock(switch.timestamp),
            "source": switch.from_subject.label if switch.from_subject else "",
            "target": switch.to_subject.label,
            "recovery": format_duration(switch.recovery_time),
        }
        for switch in session.switches
    ]
    document = _html_env.from_string(_HTML_TEMPLATE).render(
        session=session,
        started=_clock(session.start),
        ended=_clock(session.end),
        metrics=metrics,
        intervals=intervals,
        switches=switches,
    )
    path.write_text(document, encoding="utf-8")
    return path


def export_session(
    session: Session, summary: SessionSummary, path: Path, fmt: str = "json"
) -> Path:
    if fmt == "json":
        return export_json(session, summary, path)
    if fmt == "csv":
        return export_csv(session, path)
    if fmt == "html":
        return export_html(session, summary, path)
    raise ValueError(f"Unsupported export format {fmt!r}; expected one of {EXPORT_FORMATS}")
