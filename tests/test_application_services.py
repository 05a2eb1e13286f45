import unittest

from agency.domain.contracts import ClientRegisterInput
from agency.errors import NotFoundError, ValidationError
from agency.errors import PermissionError as AppPermissionError
from agency.observability import metrics_snapshot, reset_metrics_for_tests
from tests.helpers.agency_fixtures import (
    ADMIN,
    OTHER_ADMIN,
    WEBMASTER,
    AgencyHarness,
    FlakyDocumentStore,
    FlakyLocalCache,
    client_actor,
)


class _ConfirmationRecorder:
    def __init__(self, *, confirmed: bool) -> None:
        self.confirmed = confirmed
        self.calls = []

    def __call__(self, action_key: str, *, entity: str, entity_id: str) -> None:
        self.calls.append((action_key, entity, entity_id))
        if not self.confirmed:
            raise ValidationError(code="confirmation_required", message_key="confirmation_required")


class ClientServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self.harness = AgencyHarness()
        self.service = self.harness.runtime.clients

    def _register(self, actor=ADMIN, **overrides):
        values = {"nome": "Maria Souza", "email": "Maria@Loja.com", "empresa": "Loja da Maria"}
        values.update(overrides)
        return self.service.register_client(
            self.harness.repos(actor), actor=actor, register_input=ClientRegisterInput(**values)
        )

    def test_admin_registration_owns_the_client(self) -> None:
        result = self._register()

        self.assertEqual(result.status_code, 201)
        client = result.payload["client"]
        self.assertTrue(client["id"].startswith("CLI"))
        self.assertEqual(client["email"], "maria@loja.com")
        self.assertEqual(client["adminId"], ADMIN.user_id)
        self.assertEqual(client["etapaFunil"], "prospect")
        self.assertEqual(client["funnelLabel"], "Prospect")

    def test_email_is_unique_per_admin(self) -> None:
        self._register()

        with self.assertRaises(ValidationError) as ctx:
            self._register(email="maria@loja.com")
        self.assertEqual(ctx.exception.code, "email_already_registered")
        self.assertEqual(ctx.exception.http_status, 409)

        other = self._register(actor=OTHER_ADMIN)
        self.assertEqual(other.payload["client"]["adminId"], OTHER_ADMIN.user_id)

    def test_registration_validates_name_and_email(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._register(nome=" ")
        self.assertEqual(ctx.exception.code, "name_required")

        with self.assertRaises(ValidationError) as ctx:
            self._register(email="sem-arroba")
        self.assertEqual(ctx.exception.code, "email_invalid")

    def test_funnel_never_regresses(self) -> None:
        client_id = self._register().payload["client"]["id"]
        repos = self.harness.repos(ADMIN)

        advanced = self.service.update_funnel_stage(repos, actor=ADMIN, client_id=client_id, stage="negociacao")
        self.assertEqual(advanced.payload["client"]["etapaFunil"], "negociacao")

        with self.assertRaises(ValidationError) as ctx:
            self.service.update_funnel_stage(repos, actor=ADMIN, client_id=client_id, stage="contato")
        self.assertEqual(ctx.exception.code, "funnel_regression_not_allowed")

        unchanged = self.service.update_funnel_stage(repos, actor=ADMIN, client_id=client_id, stage="negociacao")
        self.assertFalse(unchanged.payload["degraded"])

        with self.assertRaises(ValidationError) as ctx:
            self.service.update_funnel_stage(repos, actor=ADMIN, client_id=client_id, stage="arquivado")
        self.assertEqual(ctx.exception.code, "funnel_stage_invalid")

    def test_lost_client_stays_lost(self) -> None:
        client_id = self._register().payload["client"]["id"]
        repos = self.harness.repos(ADMIN)

        lost = self.service.mark_lost(repos, actor=ADMIN, client_id=client_id, motivo="Sem orcamento")
        client = lost.payload["client"]
        self.assertEqual(client["etapaFunil"], "perdido")
        self.assertEqual(client["status"], "inativo")
        self.assertIn("Sem orcamento", client["historicoInteracoes"][-1]["descricao"])

        with self.assertRaises(ValidationError):
            self.service.update_funnel_stage(repos, actor=ADMIN, client_id=client_id, stage="ativo")

    def test_deactivate_client(self) -> None:
        client_id = self._register().payload["client"]["id"]

        result = self.service.deactivate_client(self.harness.repos(ADMIN), actor=ADMIN, client_id=client_id)

        self.assertEqual(result.payload["client"]["status"], "inativo")
        self.assertEqual(result.payload["client"]["etapaFunil"], "inativo")

    def test_update_client_profile(self) -> None:
        client_id = self._register().payload["client"]["id"]
        repos = self.harness.repos(ADMIN)

        updated = self.service.update_client(
            repos, actor=ADMIN, client_id=client_id, changes={"telefone": " 11 99999-0000 ", "rating": "4", "admin_id": "x"}
        )
        self.assertEqual(updated.payload["client"]["telefone"], "11 99999-0000")
        self.assertEqual(updated.payload["client"]["rating"], 4)
        self.assertEqual(updated.payload["client"]["adminId"], ADMIN.user_id)

        with self.assertRaises(ValidationError) as ctx:
            self.service.update_client(repos, actor=ADMIN, client_id=client_id, changes={"rating": 6})
        self.assertEqual(ctx.exception.code, "rating_invalid")

        with self.assertRaises(ValidationError) as ctx:
            self.service.update_client(repos, actor=ADMIN, client_id=client_id, changes={"adminId": "outro"})
        self.assertEqual(ctx.exception.code, "no_changes")

    def test_delete_client_requires_confirmation(self) -> None:
        client_id = self._register().payload["client"]["id"]
        repos = self.harness.repos(ADMIN)
        refused = _ConfirmationRecorder(confirmed=False)

        with self.assertRaises(ValidationError):
            self.service.delete_client(repos, actor=ADMIN, client_id=client_id, require_confirmation_fn=refused)
        self.assertEqual(refused.calls, [("delete_client", "client", client_id)])
        self.assertIsNotNone(repos.clients.get(client_id))

        result = self.service.delete_client(
            repos, actor=ADMIN, client_id=client_id, require_confirmation_fn=_ConfirmationRecorder(confirmed=True)
        )
        self.assertEqual(result.payload["deleted"], client_id)
        self.assertIsNone(repos.clients.get(client_id))

    def test_access_is_scoped_by_admin_and_client(self) -> None:
        client_id = self._register().payload["client"]["id"]

        with self.assertRaises(AppPermissionError):
            self.service.get_client(self.harness.repos(OTHER_ADMIN), actor=OTHER_ADMIN, client_id=client_id)
        stranger = client_actor("cli-estranho", "estranho@x.com")
        with self.assertRaises(AppPermissionError):
            self.service.get_client(self.harness.repos(stranger), actor=stranger, client_id=client_id)
        with self.assertRaises(NotFoundError):
            self.service.get_client(self.harness.repos(ADMIN), actor=ADMIN, client_id="CLI-nada")

        everything = self.service.list_clients(self.harness.repos(WEBMASTER), actor=WEBMASTER)
        self.assertEqual(everything.payload["total"], 1)
        own = self.service.list_clients(self.harness.repos(OTHER_ADMIN), actor=OTHER_ADMIN)
        self.assertEqual(own.payload["total"], 0)


class NotificationServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self.harness = AgencyHarness()
        self.notifications = self.harness.runtime.notifications

    def _kinds(self, actor) -> set:
        return {item["tipo"] for item in self.notifications.list_for(actor).payload["items"]}

    def test_workflow_events_reach_admin_and_client(self) -> None:
        flow = self.harness.signed_flow()

        self.assertTrue(
            {"novo_cliente", "nova_solicitacao", "proposta_aceita", "contrato_assinado"}.issubset(self._kinds(ADMIN))
        )
        self.assertTrue({"proposta_enviada", "projeto_criado"}.issubset(self._kinds(flow["client"])))
        self.assertEqual(self._kinds(OTHER_ADMIN), set())
        dispatched = metrics_snapshot()["notifications"]["dispatched"]
        self.assertEqual(dispatched.get("contrato_assinado"), 1)

    def test_unassigned_clients_notify_the_shared_admin_inbox(self) -> None:
        actor = client_actor("cli-livre", "livre@x.com")
        self.harness.runtime.clients.register_client(
            self.harness.repos(actor),
            actor=actor,
            register_input=ClientRegisterInput(nome="Cliente Livre", email="livre@x.com"),
        )

        items = self.notifications.list_for(OTHER_ADMIN).payload["items"]
        self.assertEqual([(item["tipo"], item["destinatarioId"]) for item in items], [("novo_cliente", "admin")])

        marked = self.notifications.mark_read(OTHER_ADMIN, items[0]["id"])
        self.assertTrue(marked.payload["notification"]["lida"])

    def test_mark_read_checks_the_recipient(self) -> None:
        flow = self.harness.signed_flow()
        admin_items = self.notifications.list_for(ADMIN).payload["items"]

        with self.assertRaises(AppPermissionError):
            self.notifications.mark_read(flow["client"], admin_items[0]["id"])
        with self.assertRaises(NotFoundError):
            self.notifications.mark_read(ADMIN, "notif-inexistente")

        before = self.notifications.list_for(ADMIN).payload["unread"]
        self.notifications.mark_read(ADMIN, admin_items[0]["id"])
        self.assertEqual(self.notifications.list_for(ADMIN).payload["unread"], before - 1)

        updated = self.notifications.mark_all_read(ADMIN).payload["updated"]
        self.assertEqual(updated, before - 1)
        self.assertEqual(self.notifications.list_for(ADMIN, unread_only=True).payload["items"], [])

    def test_failed_dispatch_never_breaks_the_workflow(self) -> None:
        store = FlakyDocumentStore()
        store.down_writes = {"notificacoes"}
        harness = AgencyHarness(store=store, cache=FlakyLocalCache(["notificacoes"]))

        flow = harness.signed_flow()

        result = flow["result"]
        self.assertFalse(result.payload["degraded"])
        self.assertEqual(result.payload["warnings"], [])
        self.assertEqual(result.payload["solicitation"]["status"], "concluida")
        self.assertEqual(store.list("notificacoes"), [])
        failed = metrics_snapshot()["notifications"]["failed"]
        self.assertEqual(failed.get("contrato_assinado"), 1)
        self.assertEqual(failed.get("projeto_criado"), 1)


class CatalogServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self.harness = AgencyHarness()
        self.catalog = self.harness.runtime.catalog

    def test_seed_is_idempotent(self) -> None:
        repos = self.harness.runtime.system_repositories()

        first = self.catalog.seed_defaults(repos)
        second = self.catalog.seed_defaults(repos)

        self.assertEqual(first, 8)
        self.assertEqual(second, 0)
        ids = {item["id"] for item in self.catalog.list_services(repos).payload["items"]}
        self.assertIn("branding-completo", ids)
        self.assertIn("landing-page", ids)

    def test_upsert_and_deactivate(self) -> None:
        repos = self.harness.repos(ADMIN)

        created = self.catalog.upsert_service(
            repos, actor=ADMIN, payload={"titulo": "Motion Design", "categoria": "Video", "preco": 2500}
        )
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.payload["service"]["id"], "motion-design")

        updated = self.catalog.upsert_service(repos, actor=ADMIN, payload={"id": "motion-design", "titulo": "Motion", "categoria": "Video"})
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.payload["service"]["preco"], 2500)

        self.catalog.deactivate_service(repos, actor=ADMIN, service_id="motion-design")
        self.assertEqual(self.catalog.list_services(repos).payload["total"], 0)
        self.assertEqual(self.catalog.list_services(repos, include_inactive=True).payload["total"], 1)

    def test_catalog_requires_staff_and_valid_price(self) -> None:
        client = client_actor()
        with self.assertRaises(AppPermissionError):
            self.catalog.upsert_service(self.harness.repos(client), actor=client, payload={"titulo": "X", "categoria": "Y"})
        with self.assertRaises(ValidationError) as ctx:
            self.catalog.upsert_service(
                self.harness.repos(ADMIN), actor=ADMIN, payload={"titulo": "X", "categoria": "Y", "preco": -5}
            )
        self.assertEqual(ctx.exception.code, "valor_invalid")


if __name__ == "__main__":
    unittest.main()
