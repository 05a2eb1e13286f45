import json
import logging
import unittest

from agency import create_app
from agency.config import Config
from agency.core.event_bus import ProjectCreated
from agency.db import close_db
from agency.observability import JsonLogFormatter, reset_metrics_for_tests, set_log_request_id
from agency.runtime import get_runtime
from tests.helpers.temp_db import TempDbSandbox


class _MetricsConfig(Config):
    TESTING = False
    DB_AUTO_INIT = False
    AUTH_ENABLED = True
    DOCUMENT_STORE_BACKEND = "memory"
    LOCAL_CACHE_BACKEND = "memory"
    STORE_BREAKER_FAILURE_THRESHOLD = 2


class ObservabilityPrometheusTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="observability_metrics")
        cfg = self._temp_db.make_config(_MetricsConfig)
        self.app = create_app(cfg)
        self.client = self.app.test_client()
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_metrics_for_tests()

    def test_metrics_endpoint_exposes_prometheus_metrics(self) -> None:
        self.client.get("/api/unknown")
        self.client.post(
            "/api/admin/clients",
            headers={"X-User-Id": "admin-ana", "X-User-Role": "admin"},
            json={"nome": "Joao Silva", "email": "joao@empresa.com"},
        )
        get_runtime(self.app).event_bus.publish(
            ProjectCreated(project_id="PROJ-2026-001", client_id="cli-joao", name="Site")
        )

        response = self.client.get("/metrics")
        self.assertEqual(response.status_code, 200)
        content_type = response.headers.get("Content-Type") or ""
        self.assertIn("text/plain", content_type)

        payload = response.get_data(as_text=True)
        self.assertIn("http_request_total", payload)
        self.assertIn("http_request_duration_ms_bucket", payload)
        self.assertIn("domain_event_emitted_total", payload)
        self.assertIn("workflow_transition_total", payload)
        self.assertIn("store_degraded_write_total", payload)
        self.assertIn("store_read_fallback_total", payload)
        self.assertIn("notification_dispatched_total", payload)
        self.assertIn("notification_failed_total", payload)
        self.assertIn("project_refresh_total", payload)
        self.assertIn('event_type="ProjectCreated"', payload)
        self.assertIn('event_type="ClientRegistered"', payload)
        self.assertIn('transition="register_client"', payload)
        self.assertIn('kind="novo_cliente"', payload)

    def test_log_formatter_includes_request_id_outside_request_context(self) -> None:
        set_log_request_id("worker-req-123")
        formatter = JsonLogFormatter()
        record = logging.LogRecord(
            name="agency",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="project_refresh_failed",
            args=(),
            exc_info=None,
        )
        parsed = json.loads(formatter.format(record))
        self.assertEqual(parsed.get("request_id"), "worker-req-123")

    def test_health_reports_store_breaker_and_metrics(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        payload = response.get_json() or {}

        self.assertEqual(payload.get("status"), "ok")
        self.assertEqual(payload.get("db"), "memory")
        breaker = (payload.get("store") or {}).get("circuit_breaker") or {}
        self.assertEqual(breaker.get("state"), "closed")
        self.assertIn("http", payload.get("metrics") or {})

    def test_health_degrades_while_breaker_is_open(self) -> None:
        breaker = get_runtime(self.app).breaker
        breaker.record_failure()
        breaker.record_failure()

        payload = self.client.get("/health").get_json() or {}

        self.assertEqual(payload.get("status"), "degraded")
        self.assertEqual(payload["store"]["circuit_breaker"]["state"], "open")


if __name__ == "__main__":
    unittest.main()
