"""Launches the local dashboard API under uvicorn."""

from __future__ import annotations

import logging
import threading
import webbrowser
from pathlib import Path
from typing import Optional

import uvicorn

from .config import TrackerSettings
from .paths import get_db_path
from .webapp import create_app

logger = logging.getLogger(__name__)

BROWSER_DELAY_SECONDS = 1.0


def build_server(
    *,
    host: str,
    port: int,
    db_path: Path,
    settings: TrackerSettings,
    log_level: str = "info",
) -> uvicorn.Server:
    app = create_app(db_path=db_path, settings=settings)
    config = uvicorn.Config(app, host=host, port=port, log_level=log_level.lower())
    return uvicorn.Server(config)


def run_dashboard(
    *,
    host: str = "127.0.0.1",
    port: int = 8765,
    db_path: Optional[Path] = None,
    settings: Optional[TrackerSettings] = None,
    open_browser: bool = False,
    log_level: Optional[str] = None,
) -> None:
    """Serve the dashboard until interrupted.

    A session started from the dashboard is stopped, and its final flush run,
    when the server shuts down.
    """
    settings = settings or TrackerSettings()
    server = build_server(
        host=host,
        port=port,
        db_path=db_path or settings.database_path or get_db_path(),
        settings=settings,
        log_level=log_level or settings.log_level,
    )
    url = f"http://{host}:{port}/docs"
    logger.info("Dashboard API available at %s", url)
    if open_browser:
        timer = threading.Timer(BROWSER_DELAY_SECONDS, _open_browser, args=(url,))
        timer.daemon = True
        timer.start()
    server.run()


def _open_browser(url: str) -> None:
    try:
        webbrowser.open(url)
    except webbrowser.Error:
        logger.exception("Failed to launch browser for %s", url)
