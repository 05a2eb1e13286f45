from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from typing import Dict

from flask import Flask

from agency.domain.contracts import Actor
from agency.errors import AppError
from agency.observability import bind_request_id
from agency.policies import load_scope_for
from agency.runtime import get_runtime


LOGGER = logging.getLogger("agency")


class ProjectRefreshScheduler:
    """Re-fetches the project list of every admin seen recently into that admin's cache.

    Admin-created projects do not reach the client portal subscriptions, so the
    admin views poll on a fixed interval. Failures back off per admin.
    """

    def __init__(self, app: Flask) -> None:
        self.app = app
        self.interval_seconds = _int_config(app, "PROJECT_REFRESH_INTERVAL_SECONDS", 10, 1, 3600)
        self.max_backoff_seconds = _int_config(
            app,
            "PROJECT_REFRESH_MAX_BACKOFF_SECONDS",
            300,
            self.interval_seconds,
            86_400,
        )
        self.watch_ttl_seconds = _int_config(
            app,
            "PROJECT_REFRESH_WATCH_TTL_SECONDS",
            900,
            self.interval_seconds,
            86_400,
        )

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._watched: Dict[str, Actor] = {}
        self._last_seen: Dict[str, float] = {}
        self._failure_counts: Dict[str, int] = {}
        self._next_run_at: Dict[str, float] = {}

    def watch(self, actor: Actor) -> None:
        if not actor.is_staff:
            return
        with self._lock:
            self._watched[actor.user_id] = actor
            self._last_seen[actor.user_id] = time.monotonic()

    def unwatch(self, owner_id: str) -> None:
        with self._lock:
            self._forget(owner_id)

    def _forget(self, owner_id: str) -> None:
        self._watched.pop(owner_id, None)
        self._last_seen.pop(owner_id, None)
        self._clear_backoff(owner_id)

    def _expire_stale(self) -> None:
        cutoff = time.monotonic() - self.watch_ttl_seconds
        for owner_id in [key for key, seen in self._last_seen.items() if seen < cutoff]:
            LOGGER.info("project_refresh_watch_expired", extra={"owner_id": owner_id})
            self._forget(owner_id)

    def watched_owners(self) -> list[str]:
        with self._lock:
            return sorted(self._watched)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run_loop, name="project-refresh", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.interval_seconds)

    def run_once(self) -> int:
        with self._lock:
            self._expire_stale()
            actors = list(self._watched.values())
        refreshed = 0
        with self.app.app_context(), bind_request_id(f"project-refresh-{uuid.uuid4().hex[:12]}"):
            runtime = get_runtime(self.app)
            for actor in actors:
                if not self._is_due(actor.user_id):
                    continue
                repos = runtime.repositories(actor.user_id)
                try:
                    runtime.projects.refresh_projects(repos, load_scope_for(actor))
                except AppError as exc:
                    LOGGER.warning(
                        "project_refresh_failed",
                        extra={"owner_id": actor.user_id, "error_code": exc.code},
                    )
                    self._register_failure(actor.user_id)
                    continue
                finally:
                    repos.close()
                self._clear_backoff(actor.user_id)
                refreshed += 1
        return refreshed

    def _is_due(self, owner_id: str) -> bool:
        next_run_at = self._next_run_at.get(owner_id)
        if next_run_at is None:
            return True
        return time.monotonic() >= next_run_at

    def _clear_backoff(self, owner_id: str) -> None:
        self._failure_counts.pop(owner_id, None)
        self._next_run_at.pop(owner_id, None)

    def _register_failure(self, owner_id: str) -> None:
        failure_count = self._failure_counts.get(owner_id, 0) + 1
        self._failure_counts[owner_id] = failure_count
        backoff_seconds = min(
            self.max_backoff_seconds,
            self.interval_seconds * (2 ** failure_count),
        )
        self._next_run_at[owner_id] = time.monotonic() + backoff_seconds


def start_project_refresh_scheduler(app: Flask) -> ProjectRefreshScheduler | None:
    if not _should_start_scheduler(app):
        return None
    scheduler = ProjectRefreshScheduler(app)
    scheduler.start()
    app.extensions["project_refresh_scheduler"] = scheduler
    app.logger.info("Project refresh scheduler started: interval=%ss", scheduler.interval_seconds)
    return scheduler


def _should_start_scheduler(app: Flask) -> bool:
    if not app.config.get("PROJECT_REFRESH_ENABLED", False):
        return False
    if app.config.get("TESTING"):
        return False
    if app.debug:
        run_main = os.environ.get("WERKZEUG_RUN_MAIN")
        if run_main and run_main.lower() != "true":
            return False
    return True


def _int_config(app: Flask, key: str, default: int, min_value: int, max_value: int) -> int:
    try:
        value = int(app.config.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(min_value, min(value, max_value))
