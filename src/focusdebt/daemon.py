"""Running a tracking session as a background process."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

import psutil

from .coordinator import Coordinator
from .models import Session

logger = logging.getLogger(__name__)

PID_POLL_SECONDS = 1.0


def read_pid(pid_path: Path) -> Optional[int]:
    try:
        content = Path(pid_path).read_text(encoding="utf-8").strip()
    except OSError:
        return None
    if not content.isdigit():
        return None
    pid = int(content)
    return pid if 0 < pid < 10_000_000 else None


def write_pid(pid_path: Path, pid: Optional[int] = None) -> None:
    pid_path = Path(pid_path)
    pid_path.parent.mkdir(parents=True, exist_ok=True)
    pid_path.write_text(str(pid or os.getpid()), encoding="utf-8")


def remove_pid(pid_path: Path) -> None:
    try:
        Path(pid_path).unlink()
    except FileNotFoundError:
        pass


def running_daemon_pid(pid_path: Path) -> Optional[int]:
    """PID of the live daemon, removing the PID file if it is stale."""
    pid = read_pid(pid_path)
    if pid is None:
        return None
    if psutil.pid_exists(pid):
        return pid
    logger.info("Removing stale PID file for process %d.", pid)
    remove_pid(pid_path)
    return None


def spawn_detached(args: Sequence[str], log_path: Path) -> int:
    """Re-launch the CLI as a background process detached from this terminal."""
    command = [sys.executable, "-m", "focusdebt", *args]
    kwargs: dict = {}
    if sys.platform == "win32":
        kwargs["creationflags"] = (
            subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]
        )
    else:
        kwargs["start_new_session"] = True
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with open(log_path, "ab") as log_file:
        process = subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=log_file,
            stderr=log_file,
            cwd=str(Path.home()),
            **kwargs,
        )
    return process.pid


def request_stop(pid_path: Path, timeout: float = 10.0) -> bool:
    """Ask the running daemon to finish its session and wait for it to exit.

    Removing the PID file is the stop signal; the daemon polls for it. A
    daemon that does not exit in time is terminated.
    """
    pid = running_daemon_pid(pid_path)
    if pid is None:
        return False
    remove_pid(pid_path)
    try:
        process = psutil.Process(pid)
        try:
            process.wait(timeout=timeout)
        except psutil.TimeoutExpired:
            logger.warning("Daemon %d did not stop within %.0fs; terminating it.", pid, timeout)
            process.terminate()
            process.wait(timeout=timeout)
    except psutil.NoSuchProcess:
        pass
    return True


def run_session(
    coordinator: Coordinator,
    session_name: str,
    pid_path: Path,
    *,
    stop_event: Optional[threading.Event] = None,
) -> Optional[Session]:
    """Run ``coordinator`` until interrupted or until the PID file disappears."""
    stop_event = stop_event or threading.Event()
    coordinator.start(session_name)
    write_pid(pid_path)

    def _handle_signal(signum: int, _frame: object) -> None:
        logger.info("Received signal %d; finishing session.", signum)
        stop_event.set()

    previous_handlers = {}
    if threading.current_thread() is threading.main_thread():
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous_handlers[signum] = signal.signal(signum, _handle_signal)

    try:
        while not stop_event.wait(PID_POLL_SECONDS):
            if read_pid(pid_path) != os.getpid():
                logger.info("PID file removed; finishing session.")
                break
        return coordinator.stop()
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)
        if read_pid(pid_path) == os.getpid():
            remove_pid(pid_path)
