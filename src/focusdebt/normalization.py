"""Utilities to normalize process names and window titles into samples."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from .models import RawWindow, Sample, normalize_domain

_BROWSER_KEYWORDS: tuple[str, ...] = (
    "chrome",
    "chromium",
    "firefox",
    "safari",
    "msedge",
    "edge",
    "brave",
    "opera",
    "vivaldi",
)

_BROWSER_SUFFIX_PATTERN = re.compile(
    r"\s*[-–—]\s*(?:Google Chrome|Chromium|Mozilla Firefox|Firefox|Safari|"
    r"Microsoft Edge|Edge|Brave|Opera|Vivaldi)$",
    re.IGNORECASE,
)

_EXTRA_TAB_COUNT_PATTERN = re.compile(r"\s+and\s+\d+\s+more\s+pages?", re.IGNORECASE)

_URL_PATTERN = re.compile(r"https?://([^/\s:?#]+)", re.IGNORECASE)

_DOMAIN_PATTERN = re.compile(
    r"\b((?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,24})\b", re.IGNORECASE
)

# Sites whose tab titles end with the site's display name instead of a hostname.
_SITE_NAMES: dict[str, str] = {
    "github": "github.com",
    "gitlab": "gitlab.com",
    "stack overflow": "stackoverflow.com",
    "youtube": "youtube.com",
    "reddit": "reddit.com",
    "twitter": "twitter.com",
    "facebook": "facebook.com",
    "instagram": "instagram.com",
    "linkedin": "linkedin.com",
    "gmail": "mail.google.com",
    "google docs": "docs.google.com",
    "google search": "google.com",
    "wikipedia": "wikipedia.org",
    "netflix": "netflix.com",
    "twitch": "twitch.tv",
    "hacker news": "news.ycombinator.com",
    "notion": "notion.so",
    "slack": "slack.com",
    "chatgpt": "chatgpt.com",
}

_SITE_SEPARATOR_PATTERN = re.compile(r"\s+[-|–—·]\s+")

_FILE_EXTENSIONS = frozenset(
    {"py", "rs", "js", "ts", "md", "txt", "pdf", "html", "json", "toml", "yaml", "png", "jpg"}
)


def is_browser(app_name: Optional[str]) -> bool:
    if not app_name:
        return False
    lowered = app_name.lower()
    return any(keyword in lowered for keyword in _BROWSER_KEYWORDS)


def normalize_app_name(app_name: Optional[str]) -> Optional[str]:
    """Strip surrounding whitespace and a trailing ``.exe`` from process names."""
    if not app_name:
        return None
    normalized = app_name.strip()
    if normalized.lower().endswith(".exe"):
        normalized = normalized[:-4]
    return normalized or None


def normalize_window_title(app_name: Optional[str], window_title: Optional[str]) -> Optional[str]:
    """Remove common browser suffixes to surface tab names."""
    if not window_title:
        return None
    normalized = window_title.strip()
    if not app_name:
        return normalized or None

    if is_browser(app_name):
        normalized = _BROWSER_SUFFIX_PATTERN.sub("", normalized)

    normalized = _strip_tab_count(normalized)
    normalized = re.sub(r"\s{2,}", " ", normalized).strip()
    return normalized or None


def extract_domain(app_name: Optional[str], window_title: Optional[str]) -> Optional[str]:
    """Return the site shown in a browser window, or None when it cannot be told."""
    if not is_browser(app_name):
        return None
    title = normalize_window_title(app_name, window_title)
    if not title:
        return None

    match = _URL_PATTERN.search(title)
    if match:
        return normalize_domain(match.group(1))

    for match in _DOMAIN_PATTERN.finditer(title):
        candidate = match.group(1)
        if candidate.rsplit(".", 1)[-1].lower() in _FILE_EXTENSIONS:
            continue
        return normalize_domain(candidate)

    segments = _SITE_SEPARATOR_PATTERN.split(title)
    for segment in (segments[-1], segments[0]):
        site = _SITE_NAMES.get(segment.strip().lower())
        if site:
            return site
    return None


def build_sample(raw: RawWindow, timestamp: datetime) -> Sample:
    app_name = normalize_app_name(raw.app_name) or "unknown"
    window_title = normalize_window_title(app_name, raw.window_title) or ""
    return Sample(
        timestamp=timestamp,
        app_name=app_name,
        window_title=window_title,
        domain=extract_domain(app_name, raw.window_title),
    )


def _strip_tab_count(value: str) -> str:
    cleaned = _EXTRA_TAB_COUNT_PATTERN.sub("", value)
    return cleaned.strip(" -|")
