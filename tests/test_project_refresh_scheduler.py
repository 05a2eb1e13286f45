import json
import logging
import time
import unittest

from agency import create_app
from agency.config import Config
from agency.db import close_db
from agency.domain.contracts import ClientRegisterInput, ProjectCreateInput
from agency.observability import JsonLogFormatter, metrics_snapshot, reset_metrics_for_tests
from agency.runtime import get_runtime
from agency.scheduler import ProjectRefreshScheduler, start_project_refresh_scheduler
from tests.helpers.agency_fixtures import ADMIN, WEBMASTER, FlakyDocumentStore, FlakyLocalCache, client_actor
from tests.helpers.temp_db import TempDbSandbox


class ProjectRefreshSchedulerTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self._temp_db = TempDbSandbox(prefix="project_refresh")
        self.store = FlakyDocumentStore()
        self.cache = FlakyLocalCache()

    def tearDown(self) -> None:
        for app in getattr(self, "_apps", []):
            with app.app_context():
                close_db()
        self._temp_db.cleanup()
        reset_metrics_for_tests()

    def _build_app(self, **overrides):
        attrs = {
            "TESTING": True,
            "DOCUMENT_STORE_BACKEND": "memory",
            "LOCAL_CACHE_BACKEND": "memory",
            "STORE_BREAKER_ENABLED": False,
            "PROJECT_REFRESH_INTERVAL_SECONDS": 5,
            "PROJECT_REFRESH_MAX_BACKOFF_SECONDS": 60,
        }
        attrs.update(overrides)
        app = create_app(self._temp_db.make_config(Config, **attrs), store=self.store, cache=self.cache)
        self._apps = getattr(self, "_apps", []) + [app]
        return app

    def _seed_project(self, app) -> str:
        runtime = get_runtime(app)
        repos = runtime.repositories(ADMIN.user_id)
        created = runtime.clients.register_client(
            repos,
            actor=ADMIN,
            register_input=ClientRegisterInput(nome="Joao Silva", email="joao@empresa.com"),
        )
        client_id = created.payload["client"]["id"]
        runtime.projects.create_project(
            repos,
            actor=ADMIN,
            create_input=ProjectCreateInput(client_id=client_id, nome="Identidade visual", valor=3500.0),
        )
        return client_id

    def test_interval_and_backoff_are_clamped(self) -> None:
        scheduler = ProjectRefreshScheduler(
            self._build_app(PROJECT_REFRESH_INTERVAL_SECONDS=0, PROJECT_REFRESH_MAX_BACKOFF_SECONDS=0)
        )
        self.assertEqual(scheduler.interval_seconds, 1)
        self.assertEqual(scheduler.max_backoff_seconds, 1)

        scheduler = ProjectRefreshScheduler(self._build_app(PROJECT_REFRESH_INTERVAL_SECONDS="muito"))
        self.assertEqual(scheduler.interval_seconds, 10)

        scheduler = ProjectRefreshScheduler(self._build_app(PROJECT_REFRESH_INTERVAL_SECONDS=99_999))
        self.assertEqual(scheduler.interval_seconds, 3600)

    def test_scheduler_not_started_in_tests_or_when_disabled(self) -> None:
        testing_app = self._build_app(PROJECT_REFRESH_ENABLED=True)
        disabled_app = self._build_app(TESTING=False, PROJECT_REFRESH_ENABLED=False)

        self.assertIsNone(start_project_refresh_scheduler(testing_app))
        self.assertIsNone(start_project_refresh_scheduler(disabled_app))
        self.assertNotIn("project_refresh_scheduler", testing_app.extensions)

    def test_only_staff_is_watched(self) -> None:
        scheduler = ProjectRefreshScheduler(self._build_app())

        scheduler.watch(client_actor())
        scheduler.watch(WEBMASTER)
        scheduler.watch(ADMIN)
        scheduler.watch(ADMIN)

        self.assertEqual(scheduler.watched_owners(), ["admin-ana", "wm-root"])

    def test_run_once_refreshes_each_watched_owner(self) -> None:
        app = self._build_app()
        self._seed_project(app)
        scheduler = ProjectRefreshScheduler(app)
        self.assertEqual(scheduler.run_once(), 0)

        scheduler.watch(ADMIN)
        scheduler.watch(WEBMASTER)

        self.assertEqual(scheduler.run_once(), 2)
        self.assertEqual(metrics_snapshot()["project_refresh"].get("ok"), 2)

        self.store.offline = True
        runtime = get_runtime(app)
        cached = runtime.projects.refresh_projects(runtime.repositories(ADMIN.user_id))
        self.assertEqual([project.nome for project in cached], ["Identidade visual"])

    def test_failures_back_off_per_owner(self) -> None:
        app = self._build_app()
        self._seed_project(app)
        scheduler = ProjectRefreshScheduler(app)
        scheduler.watch(ADMIN)
        self.store.offline = True
        self.cache.failing_prefixes.add("projetos")

        self.assertEqual(scheduler.run_once(), 0)
        self.assertEqual(metrics_snapshot()["project_refresh"].get("error"), 1)
        remaining = scheduler._next_run_at["admin-ana"] - time.monotonic()
        self.assertAlmostEqual(remaining, 10, delta=1)

        self.assertEqual(scheduler.run_once(), 0)
        self.assertEqual(metrics_snapshot()["project_refresh"].get("error"), 1)

        self.store.offline = False
        self.cache.failing_prefixes.clear()
        scheduler._next_run_at["admin-ana"] = 0.0

        self.assertEqual(scheduler.run_once(), 1)
        self.assertNotIn("admin-ana", scheduler._next_run_at)

    def test_backoff_is_capped(self) -> None:
        scheduler = ProjectRefreshScheduler(self._build_app())

        for _ in range(6):
            scheduler._register_failure("admin-ana")

        remaining = scheduler._next_run_at["admin-ana"] - time.monotonic()
        self.assertAlmostEqual(remaining, 60, delta=1)

    def test_stale_watches_expire(self) -> None:
        scheduler = ProjectRefreshScheduler(self._build_app(PROJECT_REFRESH_WATCH_TTL_SECONDS=30))
        scheduler.watch(ADMIN)
        scheduler.watch(WEBMASTER)
        scheduler._register_failure("admin-ana")
        scheduler._last_seen["admin-ana"] = time.monotonic() - 31

        scheduler.run_once()

        self.assertEqual(scheduler.watched_owners(), ["wm-root"])
        self.assertNotIn("admin-ana", scheduler._next_run_at)

    def test_logout_stops_polling_for_the_admin(self) -> None:
        app = self._build_app()
        scheduler = ProjectRefreshScheduler(app)
        app.extensions["project_refresh_scheduler"] = scheduler
        headers = {"X-User-Id": "admin-ana", "X-User-Role": "admin", "X-User-Email": "ana@agencia.com"}
        client = app.test_client()

        client.get("/api/admin/projects", headers=headers)
        self.assertEqual(scheduler.watched_owners(), ["admin-ana"])

        self.assertEqual(client.post("/api/auth/logout", headers=headers).status_code, 200)
        self.assertEqual(scheduler.watched_owners(), [])

    def test_refresh_logs_carry_a_background_request_id(self) -> None:
        app = self._build_app()
        scheduler = ProjectRefreshScheduler(app)
        scheduler.watch(ADMIN)
        self.store.offline = True
        self.cache.failing_prefixes.add("projetos")

        lines: list[str] = []
        formatter = JsonLogFormatter()
        handler = logging.Handler()
        handler.emit = lambda record: lines.append(formatter.format(record))
        logger = logging.getLogger("agency")
        logger.addHandler(handler)
        try:
            scheduler.run_once()
        finally:
            logger.removeHandler(handler)

        failures = [json.loads(line) for line in lines if "project_refresh_failed" in line]
        self.assertEqual(len(failures), 1)
        self.assertTrue(failures[0]["request_id"].startswith("project-refresh-"))

    def test_admin_project_listing_registers_a_watch(self) -> None:
        app = self._build_app()
        scheduler = ProjectRefreshScheduler(app)
        app.extensions["project_refresh_scheduler"] = scheduler

        response = app.test_client().get(
            "/api/admin/projects",
            headers={"X-User-Id": "admin-ana", "X-User-Role": "admin", "X-User-Email": "ana@agencia.com"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(scheduler.watched_owners(), ["admin-ana"])


if __name__ == "__main__":
    unittest.main()
