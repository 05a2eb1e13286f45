import unittest
from unittest.mock import patch

from agency.core.event_bus import ContractSigned, ProjectCreated
from agency.domain.contracts import ProposalSubmitInput, SolicitationCreateInput
from agency.domain.identifiers import new_contract_id, new_solicitation_id
from agency.errors import DuplicateTransitionError, NotFoundError, ValidationError
from agency.errors import PermissionError as AppPermissionError
from agency.infrastructure.repositories import LoadScope
from tests.helpers.agency_fixtures import ADMIN, OTHER_ADMIN, AgencyHarness, FlakyDocumentStore, FlakyLocalCache


class SolicitationFlowScenarioTest(unittest.TestCase):
    def setUp(self) -> None:
        self.harness = AgencyHarness()
        self.runtime = self.harness.runtime
        self.client = self.harness.register_client()

    def _solicitation(self, solicitation_id):
        return self.harness.repos(ADMIN).solicitations.get(solicitation_id)

    def _projects(self):
        return self.harness.repos(ADMIN).projects.load(LoadScope.all())

    def _notification_count(self) -> int:
        return len(self.harness.store.list("notificacoes"))

    def test_logo_design_happy_path(self) -> None:
        created = self.runtime.workflow.create_solicitation(
            self.harness.repos(self.client),
            actor=self.client,
            client_id=self.client.client_id,
            create_input=SolicitationCreateInput(titulo="Logo Design", categoria="branding", valor=0),
        )
        self.assertEqual(created.status_code, 201)
        solicitation_id = created.payload["solicitation"]["id"]
        self.assertEqual(created.payload["solicitation"]["status"], "nova")

        proposal = self.runtime.workflow.submit_proposal(
            self.harness.repos(ADMIN),
            actor=ADMIN,
            solicitation_id=solicitation_id,
            proposal_input=ProposalSubmitInput(valor=2500, descricao="Full logo package", prazo="15"),
        )
        self.assertEqual(proposal.payload["solicitation"]["status"], "proposta-criada")
        self.assertEqual(self._solicitation(solicitation_id).proposta.valor, 2500)

        accepted = self.runtime.workflow.accept_proposal(
            self.harness.repos(self.client), actor=self.client, proposal_id=solicitation_id
        )
        self.assertEqual(accepted.payload["solicitation"]["status"], "contrato-pendente")
        contracts = self.harness.repos(ADMIN).solicitations.contracts()
        self.assertEqual(len(contracts), 1)
        self.assertEqual(contracts[0].valor, 2500)

        signed = self.harness.sign(self.client, accepted.payload["contract"]["id"])
        self.assertEqual(signed.payload["solicitation"]["status"], "concluida")
        self.assertEqual(signed.payload["contract"]["status"], "assinado")
        self.assertFalse(signed.payload["warnings"])

        projects = self._projects()
        self.assertEqual(len(projects), 1)
        self.assertEqual(projects[0].valor_contratado, 2500)
        self.assertEqual(projects[0].status, "em-andamento")

        client = self.harness.repos(ADMIN).clients.get(self.client.client_id)
        self.assertEqual(client.etapa_funil, "contratado")
        self.assertEqual(client.status, "ativo")
        self.assertEqual(len(client.servicos_contratados), 1)
        self.assertEqual(client.servicos_contratados[0].status, "ativo")
        self.assertTrue(client.contrato_assinado)
        self.assertEqual(client.projetos, 1)
        self.assertTrue(client.assinatura_base64.startswith("data:image/png;base64,"))

    def test_empty_signature_is_rejected_without_side_effects(self) -> None:
        solicitation_id = self.harness.open_solicitation(self.client)
        self.harness.send_proposal(solicitation_id)
        contract_id = self.harness.accept(self.client, solicitation_id)
        notifications_before = self._notification_count()

        with self.assertRaises(ValidationError) as ctx:
            self.harness.sign(self.client, contract_id, signature=[])

        self.assertEqual(ctx.exception.code, "signature_required")
        solicitation = self._solicitation(solicitation_id)
        self.assertEqual(solicitation.status, "contrato-pendente")
        self.assertEqual(solicitation.contrato_status, "aguardando-assinatura")
        self.assertEqual(self._projects(), [])
        self.assertIsNone(self.harness.repos(ADMIN).signed_contracts.get(solicitation_id))
        self.assertEqual(self._notification_count(), notifications_before)

    def test_terms_must_be_explicitly_accepted(self) -> None:
        solicitation_id = self.harness.open_solicitation(self.client)
        self.harness.send_proposal(solicitation_id)
        contract_id = self.harness.accept(self.client, solicitation_id)

        with self.assertRaises(ValidationError) as ctx:
            self.harness.sign(self.client, contract_id, terms_accepted="true")

        self.assertEqual(ctx.exception.code, "terms_not_accepted")
        self.assertEqual(self._solicitation(solicitation_id).status, "contrato-pendente")

    def test_second_accept_is_rejected_and_keeps_one_contract(self) -> None:
        solicitation_id = self.harness.open_solicitation(self.client)
        self.harness.send_proposal(solicitation_id)
        first_contract = self.harness.accept(self.client, solicitation_id)

        with self.assertRaises(DuplicateTransitionError) as ctx:
            self.harness.accept(self.client, solicitation_id)

        self.assertEqual(ctx.exception.code, "contract_already_exists")
        self.assertEqual(ctx.exception.http_status, 409)
        contracts = self.harness.repos(ADMIN).solicitations.contracts()
        self.assertEqual([contract.id for contract in contracts], [first_contract])

    def test_signed_project_traces_back_to_solicitation_and_contract(self) -> None:
        flow = self.harness.signed_flow(self.client)

        project = self._projects()[0]
        solicitation = self._solicitation(flow["solicitation_id"])
        self.assertEqual(project.solicitacao_id, solicitation.id)
        self.assertEqual(project.proposta_id, solicitation.id)
        self.assertEqual(project.contrato_id, flow["contract_id"])
        self.assertEqual(solicitation.contrato.id, project.contrato_id)
        self.assertEqual(solicitation.projeto_id, project.id)
        self.assertRegex(project.id, r"^PROJ-\d{4}-001$")

        record = self.harness.repos(ADMIN).signed_contracts.get(solicitation.id)
        self.assertEqual(record.contrato_id, flow["contract_id"])
        self.assertTrue(record.pdf_base64.startswith("data:application/pdf;base64,"))
        self.assertEqual(flow["result"].payload["document"]["hash"], record.hash)

    def test_signed_contract_is_limited_to_the_owning_admin(self) -> None:
        flow = self.harness.signed_flow(self.client)
        workflow = self.runtime.workflow

        record = workflow.signed_contract(
            self.harness.repos(ADMIN), actor=ADMIN, solicitation_id=flow["solicitation_id"]
        )
        self.assertEqual(record.contrato_id, flow["contract_id"])

        with self.assertRaises(AppPermissionError):
            workflow.signed_contract(
                self.harness.repos(OTHER_ADMIN), actor=OTHER_ADMIN, solicitation_id=flow["solicitation_id"]
            )

    def test_signing_twice_is_a_duplicate_transition(self) -> None:
        flow = self.harness.signed_flow(self.client)

        with self.assertRaises(DuplicateTransitionError) as ctx:
            self.harness.sign(self.client, flow["contract_id"])

        self.assertEqual(ctx.exception.code, "contract_already_signed")
        self.assertEqual(len(self._projects()), 1)

    def test_signing_publishes_contract_and_project_events(self) -> None:
        received = []
        self.runtime.event_bus.subscribe(ContractSigned, received.append)
        self.runtime.event_bus.subscribe(ProjectCreated, received.append)

        flow = self.harness.signed_flow(self.client)

        self.assertEqual([type(event).__name__ for event in received], ["ContractSigned", "ProjectCreated"])
        self.assertEqual(received[0].contract_id, flow["contract_id"])
        self.assertEqual(received[0].project_id, received[1].project_id)


class SigningRetryTest(unittest.TestCase):
    def test_retry_completes_missing_signed_record(self) -> None:
        store = FlakyDocumentStore()
        cache = FlakyLocalCache()
        harness = AgencyHarness(store=store, cache=cache)
        client = harness.register_client()
        solicitation_id = harness.open_solicitation(client)
        harness.send_proposal(solicitation_id)
        contract_id = harness.accept(client, solicitation_id)

        store.down_writes = {"contratos_assinados"}
        cache.failing_prefixes = {"contratos_assinados"}
        first = harness.sign(client, contract_id)
        self.assertTrue(first.payload["warnings"])
        self.assertIsNone(harness.repos(ADMIN).signed_contracts.get(solicitation_id))

        store.down_writes = set()
        cache.failing_prefixes = set()
        second = harness.sign(client, contract_id)

        self.assertFalse(second.payload["warnings"])
        self.assertIsNotNone(harness.repos(ADMIN).signed_contracts.get(solicitation_id))
        self.assertEqual(len(harness.repos(ADMIN).projects.load(LoadScope.all())), 1)
        client_record = harness.repos(ADMIN).clients.get(client.client_id)
        self.assertEqual(len(client_record.servicos_contratados), 1)
        self.assertEqual(client_record.projetos, 1)


class SolicitationTransitionGuardsTest(unittest.TestCase):
    def setUp(self) -> None:
        self.harness = AgencyHarness()
        self.runtime = self.harness.runtime
        self.client = self.harness.register_client()

    def test_review_only_from_new(self) -> None:
        solicitation_id = self.harness.open_solicitation(self.client)
        result = self.runtime.workflow.start_review(
            self.harness.repos(ADMIN), actor=ADMIN, solicitation_id=solicitation_id
        )
        self.assertEqual(result.payload["solicitation"]["status"], "analisando")

        with self.assertRaises(DuplicateTransitionError):
            self.runtime.workflow.start_review(self.harness.repos(ADMIN), actor=ADMIN, solicitation_id=solicitation_id)

    def test_proposal_requires_positive_value_and_description(self) -> None:
        solicitation_id = self.harness.open_solicitation(self.client)
        with self.assertRaises(ValidationError) as ctx:
            self.harness.send_proposal(solicitation_id, valor=0)
        self.assertEqual(ctx.exception.code, "proposal_value_invalid")

        with self.assertRaises(ValidationError) as ctx:
            self.runtime.workflow.submit_proposal(
                self.harness.repos(ADMIN),
                actor=ADMIN,
                solicitation_id=solicitation_id,
                proposal_input=ProposalSubmitInput(valor=100, descricao="  "),
            )
        self.assertEqual(ctx.exception.code, "proposal_description_required")

    def test_client_cannot_submit_proposal(self) -> None:
        solicitation_id = self.harness.open_solicitation(self.client)
        with self.assertRaises(AppPermissionError):
            self.harness.send_proposal(solicitation_id, admin=self.client)

    def test_other_admin_cannot_touch_solicitation(self) -> None:
        solicitation_id = self.harness.open_solicitation(self.client)
        with self.assertRaises(AppPermissionError):
            self.harness.send_proposal(solicitation_id, admin=OTHER_ADMIN)

    def test_client_rejection_marks_proposal_refused(self) -> None:
        solicitation_id = self.harness.open_solicitation(self.client)
        self.harness.send_proposal(solicitation_id)

        result = self.runtime.workflow.reject_solicitation(
            self.harness.repos(self.client), actor=self.client, solicitation_id=solicitation_id, motivo="Fora do orcamento"
        )

        document = result.payload["solicitation"]
        self.assertEqual(document["status"], "rejeitada")
        self.assertEqual(document["propostaStatus"], "recusada")
        self.assertEqual(document["motivoRejeicao"], "Fora do orcamento")
        with self.assertRaises(ValidationError) as ctx:
            self.harness.accept(self.client, solicitation_id)
        self.assertEqual(ctx.exception.code, "proposal_not_active")

    def test_signed_solicitation_cannot_be_rejected(self) -> None:
        flow = self.harness.signed_flow(self.client)
        with self.assertRaises(ValidationError) as ctx:
            self.runtime.workflow.reject_solicitation(
                self.harness.repos(ADMIN), actor=ADMIN, solicitation_id=flow["solicitation_id"]
            )
        self.assertEqual(ctx.exception.code, "solicitation_not_rejectable")

    def test_transition_in_progress_is_rejected(self) -> None:
        solicitation_id = self.harness.open_solicitation(self.client)
        self.harness.send_proposal(solicitation_id)

        with self.runtime.workflow.guard.hold(solicitation_id):
            with self.assertRaises(DuplicateTransitionError) as ctx:
                self.harness.accept(self.client, solicitation_id)

        self.assertEqual(ctx.exception.code, "transition_in_progress")
        self.harness.accept(self.client, solicitation_id)

    def test_unknown_contract_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            self.harness.sign(self.client, "CONT-2026-000000")
        self.assertEqual(ctx.exception.code, "contract_not_found")

    def test_catalog_service_fills_missing_fields(self) -> None:
        result = self.runtime.workflow.create_solicitation(
            self.harness.repos(self.client),
            actor=self.client,
            client_id=self.client.client_id,
            create_input=SolicitationCreateInput(titulo="", categoria="", servico_id="site-institucional"),
        )
        document = result.payload["solicitation"]
        self.assertEqual(document["servicoId"], "site-institucional")
        self.assertTrue(document["titulo"])
        self.assertGreater(document["valor"], 0)

    def test_missing_title_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.runtime.workflow.create_solicitation(
                self.harness.repos(self.client),
                actor=self.client,
                client_id=self.client.client_id,
                create_input=SolicitationCreateInput(titulo=" ", categoria="branding"),
            )
        self.assertEqual(ctx.exception.code, "titulo_required")


class MessagesTest(unittest.TestCase):
    def setUp(self) -> None:
        self.harness = AgencyHarness()
        self.runtime = self.harness.runtime
        self.client = self.harness.register_client()

    def test_client_message_without_solicitation_opens_contact(self) -> None:
        result = self.runtime.workflow.post_message(
            self.harness.repos(self.client), actor=self.client, texto="Podemos conversar sobre um app?"
        )

        self.assertEqual(result.status_code, 201)
        document = result.payload["solicitation"]
        self.assertEqual(document["servicoId"], "contato")
        self.assertEqual(document["titulo"], "Contato Geral")
        self.assertEqual(document["respostas"][0]["autor"], "Cliente")

    def test_admin_reply_is_appended(self) -> None:
        solicitation_id = self.harness.open_solicitation(self.client)
        result = self.runtime.workflow.post_message(
            self.harness.repos(ADMIN), actor=ADMIN, texto="Recebemos seu pedido", solicitation_id=solicitation_id
        )
        self.assertEqual(result.status_code, 200)
        replies = self.harness.repos(ADMIN).solicitations.get(solicitation_id).respostas
        self.assertEqual([(reply.autor, reply.texto) for reply in replies], [("Admin", "Recebemos seu pedido")])

    def test_empty_message_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.runtime.workflow.post_message(self.harness.repos(self.client), actor=self.client, texto="   ")
        self.assertEqual(ctx.exception.code, "message_required")


class IdentifierTest(unittest.TestCase):
    def test_ids_are_unique_within_a_burst(self) -> None:
        solicitation_ids = {new_solicitation_id() for _ in range(200)}
        contract_ids = {new_contract_id() for _ in range(200)}
        self.assertEqual(len(solicitation_ids), 200)
        self.assertEqual(len(contract_ids), 200)
        self.assertTrue(all(item.startswith("SOL-") for item in solicitation_ids))

    def test_taken_solicitation_id_is_regenerated(self) -> None:
        harness = AgencyHarness()
        client = harness.register_client()
        ids = ["SOL-2026-000123", "SOL-2026-000123", "SOL-2026-000124"]

        with patch("agency.application.workflow_service.new_solicitation_id", side_effect=ids):
            first = harness.open_solicitation(client, titulo="Logo")
            second = harness.open_solicitation(client, titulo="Site")

        self.assertEqual(first, "SOL-2026-000123")
        self.assertEqual(second, "SOL-2026-000124")
        titles = sorted(item["titulo"] for item in harness.store.list("solicitacoes_clientes"))
        self.assertEqual(titles, ["Logo", "Site"])

    def test_taken_contract_id_is_regenerated(self) -> None:
        harness = AgencyHarness()
        client = harness.register_client()
        first_id = harness.open_solicitation(client, titulo="Logo")
        second_id = harness.open_solicitation(client, titulo="Site")
        harness.send_proposal(first_id)
        harness.send_proposal(second_id)

        ids = ["CONT-2026-000777", "CONT-2026-000777", "CONT-2026-000778"]
        with patch("agency.application.workflow_service.new_contract_id", side_effect=ids):
            first_contract = harness.accept(client, first_id)
            second_contract = harness.accept(client, second_id)

        self.assertEqual(first_contract, "CONT-2026-000777")
        self.assertEqual(second_contract, "CONT-2026-000778")
        found = harness.repos(ADMIN).solicitations.find_contract(second_contract)
        self.assertEqual(found[0].id, second_id)


if __name__ == "__main__":
    unittest.main()
