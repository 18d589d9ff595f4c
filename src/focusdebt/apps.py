"""Discovery of running applications and fuzzy resolution of app names."""

from __future__ import annotations

import difflib
from typing import Iterable, Optional

import psutil

from .normalization import extract_domain, is_browser, normalize_app_name, normalize_window_title
from .probe import PlatformProbe, running_gui_processes

_FRIENDLY_NAMES: tuple[tuple[str, str], ...] = (
    ("vscodium", "VSCodium"),
    ("code", "Visual Studio Code"),
    ("cursor", "Cursor"),
    ("firefox", "Firefox"),
    ("chromium", "Chromium"),
    ("chrome", "Google Chrome"),
    ("msedge", "Microsoft Edge"),
    ("brave", "Brave Browser"),
    ("vivaldi", "Vivaldi"),
    ("opera", "Opera"),
    ("safari", "Safari"),
    ("sublime", "Sublime Text"),
    ("subl", "Sublime Text"),
    ("gedit", "Gedit"),
    ("kate", "Kate"),
    ("nvim", "Neovim"),
    ("vim", "Vim"),
    ("emacs", "Emacs"),
    ("pycharm", "PyCharm"),
    ("webstorm", "WebStorm"),
    ("clion", "CLion"),
    ("idea", "IntelliJ IDEA"),
    ("android-studio", "Android Studio"),
    ("gnome-terminal", "GNOME Terminal"),
    ("konsole", "Konsole"),
    ("kitty", "kitty"),
    ("alacritty", "Alacritty"),
    ("wezterm", "WezTerm"),
    ("iterm2", "iTerm2"),
    ("terminal", "Terminal"),
    ("slack", "Slack"),
    ("discord", "Discord"),
    ("spotify", "Spotify"),
)


def friendly_name(process_name: str) -> str:
    lowered = process_name.lower()
    for key, friendly in _FRIENDLY_NAMES:
        if key in lowered:
            return friendly
    return process_name


def running_apps() -> list[tuple[str, str]]:
    """(friendly name, process name) of running GUI applications, one per friendly name."""
    seen: dict[str, str] = {}
    for proc in running_gui_processes():
        try:
            process_name = normalize_app_name(proc.info.get("name") or proc.name())
        except psutil.Error:
            continue
        if not process_name:
            continue
        seen.setdefault(friendly_name(process_name), process_name)
    return sorted(seen.items(), key=lambda item: item[0].casefold())


def resolve_app_name(
    query: str, candidates: Iterable[tuple[str, str]], *, cutoff: float = 0.5
) -> Optional[str]:
    """Process name of the candidate that best matches ``query``, if any is close enough."""
    needle = query.strip().lower()
    if not needle:
        return None
    best: Optional[str] = None
    best_score = cutoff
    for friendly, process in candidates:
        for label in (friendly.lower(), process.lower()):
            if needle == label:
                return process
            score = difflib.SequenceMatcher(None, needle, label).ratio()
            if label.startswith(needle) or needle in label.split():
                score = max(score, 0.9)
            if score > best_score:
                best, best_score = process, score
    return best


def open_browser_sites(probe: PlatformProbe) -> list[tuple[str, str]]:
    """(domain, tab title) for each open browser window whose site can be told."""
    sites: dict[str, str] = {}
    for window in probe.list_windows():
        if not is_browser(window.app_name):
            continue
        domain = extract_domain(window.app_name, window.window_title)
        if domain:
            title = normalize_window_title(window.app_name, window.window_title) or ""
            sites.setdefault(domain, title)
    return sorted(sites.items())
