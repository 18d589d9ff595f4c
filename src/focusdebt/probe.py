"""Active window detection across window systems."""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import sys
from typing import Any, Iterable, Iterator, Optional, Sequence

import psutil

from .models import RawWindow

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 0.5


class ProbeError(Exception):
    """Base class for recoverable window detection failures."""


class NoActiveWindow(ProbeError):
    """No strategy could tell which window has focus."""


class ProbeTimeout(ProbeError):
    """The probe did not answer within its time budget."""


class StrategyUnavailable(ProbeError):
    """The strategy's backing tool or API is missing on this system."""


def _process_name(pid: int) -> Optional[str]:
    try:
        return psutil.Process(pid).name() if pid else None
    except (psutil.Error, ProcessLookupError):
        return None


def _run(args: Sequence[str], timeout: float) -> str:
    try:
        result = subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as exc:
        raise StrategyUnavailable(f"{args[0]} is not installed") from exc
    except subprocess.TimeoutExpired as exc:
        raise ProbeTimeout(f"{args[0]} did not answer within {timeout:.2f}s") from exc
    if result.returncode != 0:
        raise NoActiveWindow(
            f"{args[0]} exited with {result.returncode}: {result.stderr.strip()}"
        )
    return result.stdout.strip()


class ProbeStrategy:
    """One way of asking the window system which window has focus."""

    name = "base"

    def is_available(self) -> bool:
        return True

    def query(self, timeout: float) -> RawWindow:
        raise NotImplementedError

    def list_windows(self, timeout: float) -> list[RawWindow]:
        """Every top-level window the strategy can see, focused or not."""
        raise StrategyUnavailable(f"{self.name} cannot enumerate windows")


class HyprlandStrategy(ProbeStrategy):
    name = "hyprland"

    def is_available(self) -> bool:
        return bool(os.environ.get("HYPRLAND_INSTANCE_SIGNATURE")) and bool(
            shutil.which("hyprctl")
        )

    def query(self, timeout: float) -> RawWindow:
        output = _run(["hyprctl", "activewindow", "-j"], timeout)
        try:
            data = json.loads(output or "{}")
        except json.JSONDecodeError as exc:
            raise NoActiveWindow("hyprctl returned malformed JSON") from exc
        app_name = (data.get("class") or "").strip()
        if not app_name:
            app_name = _process_name(int(data.get("pid") or 0)) or ""
        if not app_name:
            raise NoActiveWindow("hyprctl reported no focused window")
        return RawWindow(app_name=app_name, window_title=(data.get("title") or "").strip())

    def list_windows(self, timeout: float) -> list[RawWindow]:
        output = _run(["hyprctl", "clients", "-j"], timeout)
        try:
            clients = json.loads(output or "[]")
        except json.JSONDecodeError as exc:
            raise NoActiveWindow("hyprctl returned malformed JSON") from exc
        return [
            RawWindow(app_name=client["class"], window_title=(client.get("title") or "").strip())
            for client in clients
            if client.get("class")
        ]


class SwayStrategy(ProbeStrategy):
    name = "sway"

    def is_available(self) -> bool:
        return bool(os.environ.get("SWAYSOCK")) and bool(shutil.which("swaymsg"))

    def query(self, timeout: float) -> RawWindow:
        output = _run(["swaymsg", "-t", "get_tree", "-r"], timeout)
        try:
            tree = json.loads(output)
        except json.JSONDecodeError as exc:
            raise NoActiveWindow("swaymsg returned malformed JSON") from exc
        node = _find_focused(tree)
        if node is None:
            raise NoActiveWindow("sway reported no focused window")
        app_name = node.get("app_id") or (node.get("window_properties") or {}).get("class")
        if not app_name:
            app_name = _process_name(int(node.get("pid") or 0))
        if not app_name:
            raise NoActiveWindow("focused sway node has no application id")
        return RawWindow(app_name=app_name, window_title=(node.get("name") or "").strip())

    def list_windows(self, timeout: float) -> list[RawWindow]:
        output = _run(["swaymsg", "-t", "get_tree", "-r"], timeout)
        try:
            tree = json.loads(output)
        except json.JSONDecodeError as exc:
            raise NoActiveWindow("swaymsg returned malformed JSON") from exc
        windows = []
        for node in _iter_windows(tree):
            app_name = node.get("app_id") or (node.get("window_properties") or {}).get("class")
            if app_name:
                windows.append(
                    RawWindow(app_name=app_name, window_title=(node.get("name") or "").strip())
                )
        return windows


def _find_focused(node: dict[str, Any]) -> Optional[dict[str, Any]]:
    if node.get("focused") and node.get("type") in ("con", "floating_con"):
        return node
    for child in (*node.get("nodes", ()), *node.get("floating_nodes", ())):
        found = _find_focused(child)
        if found is not None:
            return found
    return None


class XdotoolStrategy(ProbeStrategy):
    """Generic X11 query through xdotool."""

    name = "xdotool"

    def is_available(self) -> bool:
        return bool(os.environ.get("DISPLAY")) and bool(shutil.which("xdotool"))

    def query(self, timeout: float) -> RawWindow:
        window_title = _run(["xdotool", "getactivewindow", "getwindowname"], timeout)
        pid_text = _run(["xdotool", "getactivewindow", "getwindowpid"], timeout)
        if not pid_text.isdigit():
            raise NoActiveWindow(f"xdotool returned a non-numeric pid: {pid_text!r}")
        app_name = _process_name(int(pid_text))
        if not app_name:
            raise NoActiveWindow(f"process {pid_text} vanished")
        return RawWindow(app_name=app_name, window_title=window_title)

    def list_windows(self, timeout: float) -> list[RawWindow]:
        ids = _run(["xdotool", "search", "--onlyvisible", "--name", "."], timeout).split()
        windows = []
        for window_id in ids:
            try:
                title = _run(["xdotool", "getwindowname", window_id], timeout)
                pid_text = _run(["xdotool", "getwindowpid", window_id], timeout)
            except NoActiveWindow:
                continue
            app_name = _process_name(int(pid_text)) if pid_text.isdigit() else None
            if app_name and title:
                windows.append(RawWindow(app_name=app_name, window_title=title))
        return windows


_APPLESCRIPT = """
try
    tell application "System Events"
        set frontApp to name of first application process whose frontmost is true
    end tell
    try
        tell application frontApp
            set windowName to name of front window
        end tell
    on error
        set windowName to ""
    end try
    return frontApp & "|" & windowName
on error
    return ""
end try
"""


class AppleScriptStrategy(ProbeStrategy):
    """macOS accessibility query through System Events."""

    name = "applescript"

    def is_available(self) -> bool:
        return sys.platform == "darwin" and bool(shutil.which("osascript"))

    def query(self, timeout: float) -> RawWindow:
        output = _run(["osascript", "-e", _APPLESCRIPT], timeout)
        app_name, _, window_title = output.partition("|")
        if not app_name.strip():
            raise NoActiveWindow("System Events reported no frontmost application")
        return RawWindow(app_name=app_name.strip(), window_title=window_title.strip())


class Win32Strategy(ProbeStrategy):
    """Retrieves the foreground window title and process name."""

    name = "win32"

    def is_available(self) -> bool:
        return sys.platform == "win32"

    def query(self, timeout: float) -> RawWindow:
        import ctypes
        from ctypes import wintypes

        user32 = ctypes.windll.user32  # type: ignore[attr-defined]
        hwnd = user32.GetForegroundWindow()
        if not hwnd:
            raise NoActiveWindow("no foreground window")

        length = user32.GetWindowTextLengthW(hwnd)
        buffer = ctypes.create_unicode_buffer(length + 1)
        user32.GetWindowTextW(hwnd, buffer, length + 1)

        pid = wintypes.DWORD()
        user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
        process_name = _process_name(pid.value)
        if not process_name:
            raise NoActiveWindow("foreground window has no owning process")
        return RawWindow(app_name=process_name, window_title=buffer.value.strip())


# Process names considered interactive when nothing better is available.
GUI_APPS: tuple[str, ...] = (
    "code",
    "cursor",
    "vscodium",
    "sublime_text",
    "subl",
    "gedit",
    "kate",
    "nvim",
    "vim",
    "emacs",
    "idea",
    "pycharm",
    "webstorm",
    "clion",
    "android-studio",
    "firefox",
    "chrome",
    "chromium",
    "brave",
    "msedge",
    "opera",
    "vivaldi",
    "safari",
    "kitty",
    "alacritty",
    "wezterm",
    "gnome-terminal",
    "konsole",
    "iterm2",
    "terminal",
    "slack",
    "discord",
    "spotify",
)


def running_gui_processes() -> list[psutil.Process]:
    processes = []
    for proc in psutil.process_iter(["name", "create_time"]):
        name = (proc.info.get("name") or "").lower()
        if name.endswith(".exe"):
            name = name[:-4]
        if name and any(name == app or name.startswith(app) for app in GUI_APPS):
            processes.append(proc)
    return processes


class ProcessTableStrategy(ProbeStrategy):
    """Last resort: the most recently started interactive application."""

    name = "process-table"

    def query(self, timeout: float) -> RawWindow:
        candidates = running_gui_processes()
        if not candidates:
            raise NoActiveWindow("no interactive application is running")
        newest = max(candidates, key=lambda proc: proc.info.get("create_time") or 0.0)
        return RawWindow(app_name=newest.info["name"], window_title="")


def default_strategies(platform: Optional[str] = None) -> list[ProbeStrategy]:
    """Return the fixed detection order for ``platform``."""
    platform = platform or sys.platform
    if platform == "win32":
        return [Win32Strategy(), ProcessTableStrategy()]
    if platform == "darwin":
        return [AppleScriptStrategy(), ProcessTableStrategy()]
    return [HyprlandStrategy(), SwayStrategy(), XdotoolStrategy(), ProcessTableStrategy()]


class PlatformProbe:
    """Tries each strategy in order and returns the first answer."""

    def __init__(
        self,
        strategies: Optional[Iterable[ProbeStrategy]] = None,
        *,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.command_timeout = command_timeout

    def available_strategies(self) -> list[ProbeStrategy]:
        available = []
        for strategy in self.strategies:
            try:
                if strategy.is_available():
                    available.append(strategy)
            except Exception:
                logger.debug("Availability check failed for %s", strategy.name, exc_info=True)
        return available

    def sample(self) -> RawWindow:
        for strategy in self.strategies:
            try:
                if not strategy.is_available():
                    continue
                return strategy.query(self.command_timeout)
            except ProbeError as exc:
                logger.debug("Probe strategy %s failed: %s", strategy.name, exc)
            except Exception:
                logger.debug("Probe strategy %s raised", strategy.name, exc_info=True)
        raise NoActiveWindow("no detection strategy reported a focused window")

    def list_windows(self) -> list[RawWindow]:
        """Open windows from the first strategy that can enumerate them.

        Falls back to the focused window alone when no strategy can list
        windows.
        """
        for strategy in self.strategies:
            try:
                if not strategy.is_available():
                    continue
                return strategy.list_windows(self.command_timeout)
            except ProbeError as exc:
                logger.debug("Window listing via %s failed: %s", strategy.name, exc)
            except Exception:
                logger.debug("Window listing via %s raised", strategy.name, exc_info=True)
        return [self.sample()]
