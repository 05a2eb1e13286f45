import unittest

from agency import create_app
from agency.config import Config
from agency.db import close_db
from agency.ui_strings import confirm_message, error_message
from tests.helpers.temp_db import TempDbSandbox


class CriticalActionConfirmationTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="critical_confirm")
        TempConfig = self._temp_db.make_config(
            Config,
            TESTING=True,
            AUTH_ENABLED=True,
            STORE_BREAKER_ENABLED=False,
        )

        self.app = create_app(TempConfig)
        self.client = self.app.test_client()
        self.headers = {
            "X-User-Id": "admin-ana",
            "X-User-Role": "admin",
            "X-User-Email": "ana@agencia.com",
            "X-User-Name": "Ana Admin",
        }

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def _create_client(self) -> str:
        response = self.client.post(
            "/api/admin/clients",
            headers=self.headers,
            json={"nome": "Joao Silva", "email": "joao@empresa.com", "empresa": "Empresa Exemplo"},
        )
        self.assertEqual(response.status_code, 201)
        return response.get_json()["client"]["id"]

    def _create_project(self) -> str:
        client_id = self._create_client()
        response = self.client.post(
            "/api/admin/projects",
            headers=self.headers,
            json={"clienteId": client_id, "nome": "Identidade visual", "valor": "3.500,00"},
        )
        self.assertEqual(response.status_code, 201)
        return response.get_json()["project"]["id"]

    def test_delete_client_without_confirmation_fails(self) -> None:
        client_id = self._create_client()

        response = self.client.delete(f"/api/admin/clients/{client_id}", headers=self.headers)

        self.assertEqual(response.status_code, 400)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "confirmation_required")
        self.assertEqual(payload.get("message"), error_message("confirmation_required"))
        self.assertEqual(payload.get("action"), "delete_client")
        confirmation = payload.get("confirmation") or {}
        self.assertEqual(confirmation.get("action_key"), "delete_client")
        self.assertEqual(confirmation.get("confirm_message"), confirm_message("delete_client"))
        self.assertTrue(confirmation.get("impact"))

        still_there = self.client.get(f"/api/admin/clients/{client_id}", headers=self.headers)
        self.assertEqual(still_there.status_code, 200)

    def test_delete_client_with_confirmation_passes(self) -> None:
        client_id = self._create_client()

        response = self.client.delete(f"/api/admin/clients/{client_id}?confirm=true", headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json().get("deleted"), client_id)
        gone = self.client.get(f"/api/admin/clients/{client_id}", headers=self.headers)
        self.assertEqual(gone.status_code, 404)

    def test_confirm_token_header_counts_as_confirmation(self) -> None:
        client_id = self._create_client()
        headers = dict(self.headers, **{"X-Confirm-Token": "tok-123"})

        response = self.client.delete(f"/api/admin/clients/{client_id}", headers=headers)

        self.assertEqual(response.status_code, 200)

    def test_cancel_project_requires_confirmation(self) -> None:
        project_id = self._create_project()

        blocked = self.client.post(
            f"/api/admin/projects/{project_id}/status",
            headers=self.headers,
            json={"status": "cancelado"},
        )
        self.assertEqual(blocked.status_code, 400)
        self.assertEqual((blocked.get_json().get("confirmation") or {}).get("action_key"), "cancel_project")

        confirmed = self.client.post(
            f"/api/admin/projects/{project_id}/status",
            headers=self.headers,
            json={"status": "cancelado", "confirm": True},
        )
        self.assertEqual(confirmed.status_code, 200)
        self.assertEqual(confirmed.get_json()["project"]["status"], "cancelado")

    def test_regular_status_change_needs_no_confirmation(self) -> None:
        project_id = self._create_project()

        response = self.client.post(
            f"/api/admin/projects/{project_id}/status",
            headers=self.headers,
            json={"status": "em-andamento", "progresso": 10},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["project"]["progresso"], 10)

    def test_ui_config_publishes_critical_actions(self) -> None:
        response = self.client.get("/api/ui-config")

        self.assertEqual(response.status_code, 200)
        actions = response.get_json().get("critical_actions") or {}
        self.assertEqual(set(actions), {"delete_client", "cancel_project"})
        self.assertEqual(actions["cancel_project"]["confirm_key"], "cancel_project")


if __name__ == "__main__":
    unittest.main()
