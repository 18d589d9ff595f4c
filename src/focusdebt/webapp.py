"""FastAPI application exposing live and recorded session metrics."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict

from .aggregator import summarize_session
from .config import ConfigError, TrackerSettings
from .coordinator import Coordinator, CoordinatorError, CoordinatorState
from .db import PersistenceError, SqliteStore
from .export import session_to_dict, summary_to_dict
from .paths import get_db_path
from .probe import PlatformProbe

logger = logging.getLogger(__name__)


class TrackingRunner:
    """Manage one tracking session in the background of the web server."""

    def __init__(
        self,
        db_path: Path,
        settings: TrackerSettings,
        probe_factory: Optional[Callable[[], PlatformProbe]] = None,
    ) -> None:
        self._db_path = Path(db_path)
        self._settings = settings
        self._probe_factory = probe_factory
        self._lock = threading.Lock()
        self._coordinator: Optional[Coordinator] = None
        self._store: Optional[SqliteStore] = None

    def start(self, session_name: str) -> Dict[str, Any]:
        with self._lock:
            if self._coordinator and self._coordinator.state is CoordinatorState.RUNNING:
                raise CoordinatorError("a session is already being tracked")
            store = SqliteStore(self._db_path)
            try:
                focus_set = self._settings.focus_set(
                    store.list_policy_entries("focus_apps"),
                    store.list_policy_entries("focus_sites"),
                    store.list_policy_entries("ignored_apps"),
                )
                probe = self._probe_factory() if self._probe_factory else None
                coordinator = Coordinator(store, self._settings, focus_set, probe=probe)
                session = coordinator.start(session_name)
            except Exception:
                store.close()
                raise
            self._store = store
            self._coordinator = coordinator
            logger.info("Tracking session %r started from the dashboard.", session.name)
            return session_to_dict(session, include_records=False)

    def stop(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            coordinator, store = self._coordinator, self._store
            if coordinator is None or coordinator.state is not CoordinatorState.RUNNING:
                return None
        try:
            session = coordinator.stop()
        except PersistenceError:
            if not coordinator.retry_flush():
                store.close()
                raise
            session = coordinator.snapshot()
        store.close()
        logger.info("Tracking session %r stopped from the dashboard.", session.name)
        return session_to_dict(session, include_records=False)

    def is_running(self) -> bool:
        with self._lock:
            return bool(
                self._coordinator and self._coordinator.state is CoordinatorState.RUNNING
            )

    def live(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            coordinator = self._coordinator
        if coordinator is None or coordinator.state is not CoordinatorState.RUNNING:
            return None
        session = coordinator.snapshot()
        return {
            "session": session_to_dict(session, include_records=False),
            "summary": summary_to_dict(coordinator.summary()),
        }


class SessionStartPayload(BaseModel):
    name: str

    model_config = ConfigDict(extra="forbid")


@contextmanager
def _store(db_path: Path) -> Iterator[SqliteStore]:
    store = SqliteStore(db_path)
    try:
        yield store
    finally:
        store.close()


def create_app(
    *,
    db_path: Optional[Path] = None,
    settings: Optional[TrackerSettings] = None,
    probe_factory: Optional[Callable[[], PlatformProbe]] = None,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    resolved_db_path = Path(db_path or get_db_path())
    resolved_settings = settings or TrackerSettings()
    runner = TrackingRunner(resolved_db_path, resolved_settings, probe_factory)

    app = FastAPI(title="focusdebt", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db_path = resolved_db_path
    app.state.tracking_runner = runner

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        try:
            runner.stop()
        except PersistenceError:
            logger.exception("Final flush failed while shutting down the dashboard.")

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        return {
            "tracking": request.app.state.tracking_runner.is_running(),
            "database_path": str(request.app.state.db_path),
            "settings": resolved_settings.as_dict(),
        }

    @app.post("/api/session/start")
    def start_session(payload: SessionStartPayload, request: Request) -> Dict[str, Any]:
        name = payload.name.strip()
        if not name:
            raise HTTPException(status_code=400, detail="name is required")
        try:
            session = request.app.state.tracking_runner.start(name)
        except (CoordinatorError, ConfigError, PersistenceError) as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"session": session}

    @app.post("/api/session/stop")
    def stop_session(request: Request) -> Dict[str, Any]:
        try:
            session = request.app.state.tracking_runner.stop()
        except PersistenceError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        if session is None:
            raise HTTPException(status_code=404, detail="No session is being tracked")
        return {"session": session}

    @app.get("/api/session/live")
    def live_session(request: Request) -> Dict[str, Any]:
        live = request.app.state.tracking_runner.live()
        if live is None:
            raise HTTPException(status_code=404, detail="No session is being tracked")
        return live

    @app.get("/api/sessions")
    def list_sessions(request: Request) -> Dict[str, Any]:
        with _store(request.app.state.db_path) as store:
            sessions = store.list_sessions()
        return {
            "sessions": [session_to_dict(s, include_records=False) for s in sessions],
        }

    @app.get("/api/sessions/{name}")
    def session_detail(name: str, request: Request) -> Dict[str, Any]:
        with _store(request.app.state.db_path) as store:
            session = store.load_session(name)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        summary = summarize_session(
            session,
            deep_focus_threshold=resolved_settings.deep_focus_threshold,
            max_run_gap=resolved_settings.deep_focus_gap,
        )
        return {
            "session": session_to_dict(session),
            "summary": summary_to_dict(summary),
        }

    return app
