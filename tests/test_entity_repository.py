import unittest

from agency.domain.models import Solicitation
from agency.errors import StoreUnavailableError
from agency.infrastructure.circuit_breaker import StoreCircuitBreaker
from agency.infrastructure.document_store import InMemoryDocumentStore
from agency.infrastructure.local_cache import InMemoryLocalCache, cache_key
from agency.infrastructure.repositories import (
    ClientRepository,
    LoadScope,
    OwnerScopeRequiredError,
    SolicitationRepository,
    build_repositories,
)
from agency.observability import metrics_snapshot, reset_metrics_for_tests
from agency.ui_strings import warning_message
from agency.workflow.derivations import dedupe_by_key
from tests.helpers.agency_fixtures import FlakyDocumentStore, FlakyLocalCache


def _solicitation_doc(solicitation_id: str, **overrides) -> dict:
    document = {
        "id": solicitation_id,
        "titulo": f"Pedido {solicitation_id}",
        "categoria": "branding",
        "clienteId": "cli-1",
        "adminId": "admin-ana",
        "status": "proposta-criada",
        "proposta": {"valor": 1200, "descricao": "Pacote", "prazo": "10"},
        "propostaStatus": "pendente",
    }
    document.update(overrides)
    return document


class _ReplayingStore(InMemoryDocumentStore):
    """Returns every document twice, like a subscription replay merged into a fetch."""

    def list(self, collection):
        documents = super().list(collection)
        return documents + documents


class EntityRepositoryLoadTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self.store = FlakyDocumentStore()
        self.cache = InMemoryLocalCache()

    def _repository(self, owner_id: str = "admin-ana") -> SolicitationRepository:
        return SolicitationRepository(self.store, self.cache, owner_id=owner_id)

    def test_owner_is_required(self) -> None:
        with self.assertRaises(OwnerScopeRequiredError):
            SolicitationRepository(self.store, self.cache, owner_id="  ")

    def test_privileged_load_merges_cache_with_remote(self) -> None:
        self.store.set("solicitacoes_clientes", "SOL-1", _solicitation_doc("SOL-1", titulo="Remoto"))
        self.cache.write_list(
            cache_key("solicitacoes", "wm-root"),
            [_solicitation_doc("SOL-1", titulo="Antigo"), _solicitation_doc("SOL-2", adminId="admin-bia")],
        )

        items = self._repository("wm-root").load(LoadScope.all())

        by_id = {item.id: item for item in items}
        self.assertEqual(set(by_id), {"SOL-1", "SOL-2"})
        self.assertEqual(by_id["SOL-1"].titulo, "Remoto")

    def test_scoped_load_keeps_remote_answer_when_present(self) -> None:
        self.store.set("solicitacoes_clientes", "SOL-1", _solicitation_doc("SOL-1"))
        self.store.set("solicitacoes_clientes", "SOL-9", _solicitation_doc("SOL-9", adminId="admin-bia"))
        self.cache.write_list(cache_key("solicitacoes", "admin-ana"), [_solicitation_doc("SOL-2")])

        items = self._repository().load(LoadScope.owned_by_admin("admin-ana"))

        self.assertEqual([item.id for item in items], ["SOL-1"])

    def test_scoped_load_keeps_offline_writes_in_the_cache(self) -> None:
        self.store.set("solicitacoes_clientes", "SOL-A", _solicitation_doc("SOL-A"))
        repository = self._repository()
        self.store.down_writes = {"solicitacoes_clientes"}
        result = repository.persist(Solicitation.from_document(_solicitation_doc("SOL-OFFLINE")))
        self.assertTrue(result.degraded)

        self.store.down_writes = set()
        online = repository.load(LoadScope.owned_by_admin("admin-ana"))
        self.assertEqual([item.id for item in online], ["SOL-A"])

        self.store.offline = True
        offline = repository.load(LoadScope.owned_by_admin("admin-ana"))
        self.assertEqual({item.id for item in offline}, {"SOL-A", "SOL-OFFLINE"})

    def test_scoped_load_falls_back_to_cache_when_remote_is_empty(self) -> None:
        self.cache.write_list(
            cache_key("solicitacoes", "admin-ana"),
            [_solicitation_doc("SOL-2"), _solicitation_doc("SOL-3", adminId="admin-bia")],
        )

        items = self._repository().load(LoadScope.owned_by_admin("admin-ana"))

        self.assertEqual([item.id for item in items], ["SOL-2"])

    def test_remote_failure_reads_cache_and_counts_fallback(self) -> None:
        self.cache.write_list(cache_key("solicitacoes", "admin-ana"), [_solicitation_doc("SOL-4")])
        self.store.offline = True

        items = self._repository().load(LoadScope.owned_by_admin("admin-ana"))

        self.assertEqual([item.id for item in items], ["SOL-4"])
        fallbacks = metrics_snapshot()["store"]["read_fallbacks"]
        self.assertEqual(fallbacks.get("solicitacoes_clientes"), 1)

    def test_remote_and_cache_down_is_data_unavailable(self) -> None:
        self.store.offline = True
        repository = SolicitationRepository(self.store, FlakyLocalCache(["solicitacoes"]), owner_id="admin-ana")

        with self.assertRaises(StoreUnavailableError) as ctx:
            repository.load(LoadScope.owned_by_admin("admin-ana"))

        self.assertEqual(ctx.exception.code, "data_unavailable")

    def test_documents_without_id_are_dropped(self) -> None:
        self.cache.write_list(cache_key("solicitacoes", "wm-root"), [{"titulo": "sem id"}, _solicitation_doc("SOL-5")])

        items = self._repository("wm-root").load(LoadScope.all())

        self.assertEqual([item.id for item in items], ["SOL-5"])


class EntityRepositoryPersistTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self.store = FlakyDocumentStore()
        self.cache = InMemoryLocalCache()
        self.repository = SolicitationRepository(self.store, self.cache, owner_id="cli-1")

    def test_persist_writes_remote_and_cache(self) -> None:
        solicitation = Solicitation.from_document(_solicitation_doc("SOL-10"))

        result = self.repository.persist(solicitation)

        self.assertFalse(result.degraded)
        self.assertEqual(self.store.get("solicitacoes_clientes", "SOL-10")["titulo"], "Pedido SOL-10")
        self.assertEqual([item["id"] for item in self.cache.read_list("solicitacoes_cli-1")], ["SOL-10"])

    def test_persist_degrades_to_cache_when_remote_is_down(self) -> None:
        self.store.down_writes = {"solicitacoes_clientes"}
        solicitation = Solicitation.from_document(_solicitation_doc("SOL-11"))

        result = self.repository.persist(solicitation)

        self.assertTrue(result.degraded)
        self.assertEqual(result.warning, warning_message("saved_offline"))
        self.assertIsNone(self.store.get("solicitacoes_clientes", "SOL-11"))
        self.assertEqual([item["id"] for item in self.cache.read_list("solicitacoes_cli-1")], ["SOL-11"])
        self.assertEqual(metrics_snapshot()["store"]["degraded_writes"].get("solicitacoes_clientes"), 1)

    def test_unknown_keys_survive_a_round_trip(self) -> None:
        solicitation = Solicitation.from_document(_solicitation_doc("SOL-12", origem="landing-page"))

        self.repository.persist(solicitation)

        self.assertEqual(self.store.get("solicitacoes_clientes", "SOL-12")["origem"], "landing-page")

    def test_delete_removes_remote_and_cache_entries(self) -> None:
        self.repository.persist(Solicitation.from_document(_solicitation_doc("SOL-13")))

        self.repository.delete("SOL-13")

        self.assertIsNone(self.store.get("solicitacoes_clientes", "SOL-13"))
        self.assertEqual(self.cache.read_list("solicitacoes_cli-1"), [])


class DerivedListDeduplicationTest(unittest.TestCase):
    def test_replayed_documents_yield_one_proposal_and_contract_each(self) -> None:
        store = _ReplayingStore()
        store.set("solicitacoes_clientes", "SOL-20", _solicitation_doc("SOL-20"))
        store.set(
            "solicitacoes_clientes",
            "SOL-21",
            _solicitation_doc(
                "SOL-21",
                status="contrato-pendente",
                contratoId="CONT-2026-000021",
                contratoStatus="aguardando-assinatura",
                contrato={"id": "CONT-2026-000021", "valor": 1200, "status": "aguardando-assinatura"},
            ),
        )
        repository = SolicitationRepository(store, InMemoryLocalCache(), owner_id="wm-root")

        proposals = repository.proposals()
        contracts = repository.contracts()

        self.assertEqual(sorted(proposal.id for proposal in proposals), ["SOL-20", "SOL-21"])
        self.assertEqual([contract.id for contract in contracts], ["CONT-2026-000021"])

    def test_dedupe_keeps_first_occurrence_order(self) -> None:
        items = [("a", 1), ("b", 2), ("a", 3), ("c", 4), ("b", 5)]
        self.assertEqual(dedupe_by_key(items, lambda item: item[0]), [("a", 1), ("b", 2), ("c", 4)])


class StoreCircuitBreakerTest(unittest.TestCase):
    def test_breaker_opens_after_threshold_and_skips_remote(self) -> None:
        store = FlakyDocumentStore()
        store.offline = True
        breaker = StoreCircuitBreaker(failure_threshold=2, open_seconds=60)
        repository = ClientRepository(store, InMemoryLocalCache(), owner_id="admin-ana", breaker=breaker)

        repository.load(LoadScope.owned_by_admin("admin-ana"))
        repository.load(LoadScope.owned_by_admin("admin-ana"))
        self.assertEqual(breaker.snapshot()["state"], "open")

        store.offline = False
        with self.assertRaises(StoreUnavailableError) as ctx:
            repository._remote("list", lambda: store.list("clientes"))
        self.assertEqual(ctx.exception.code, "store_circuit_open")

    def test_half_open_probe_closes_on_success(self) -> None:
        breaker = StoreCircuitBreaker(failure_threshold=1, open_seconds=0)
        breaker.record_failure()
        self.assertEqual(breaker.snapshot()["state"], "open")

        allowed, state = breaker.before_call()
        self.assertTrue(allowed)
        self.assertEqual(state, "half_open")
        self.assertEqual(breaker.before_call(), (False, "half_open"))

        breaker.record_success()
        self.assertEqual(breaker.snapshot()["state"], "closed")


class SubscriptionLifecycleTest(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryDocumentStore()
        self.repos = build_repositories(self.store, InMemoryLocalCache(), owner_id="cli-1")

    def test_subscription_replays_on_every_write(self) -> None:
        received = []
        self.repos.solicitations.subscribe("clienteId", "cli-1", lambda items: received.append([i.id for i in items]))

        self.store.set("solicitacoes_clientes", "SOL-30", _solicitation_doc("SOL-30"))
        self.store.set("solicitacoes_clientes", "SOL-31", _solicitation_doc("SOL-31", clienteId="cli-2"))

        self.assertEqual(received, [[], ["SOL-30"], ["SOL-30"]])

    def test_dispose_is_idempotent_and_close_releases_watchers(self) -> None:
        first = self.repos.solicitations.subscribe("clienteId", "cli-1", lambda items: None)
        second = self.repos.projects.subscribe("clienteId", "cli-1", lambda items: None)
        self.assertEqual(self.store.active_subscription_count(), 2)

        first.dispose()
        first.dispose()
        self.assertTrue(first.disposed)
        self.assertEqual(self.store.active_subscription_count(), 1)

        self.repos.close()
        self.assertTrue(second.disposed)
        self.assertEqual(self.store.active_subscription_count(), 0)

    def test_resubscribing_same_query_replaces_previous(self) -> None:
        first = self.repos.solicitations.subscribe("clienteId", "cli-1", lambda items: None)
        self.repos.solicitations.subscribe("clienteId", "cli-1", lambda items: None)

        self.assertTrue(first.disposed)
        self.assertEqual(self.store.active_subscription_count("solicitacoes_clientes"), 1)


class LocalCacheTest(unittest.TestCase):
    def test_upsert_replaces_by_id_and_discard_removes(self) -> None:
        cache = InMemoryLocalCache()
        cache.upsert("projetos_admin-ana", {"id": "PROJ-2026-001", "status": "planejamento"})
        cache.upsert("projetos_admin-ana", {"id": "PROJ-2026-001", "status": "em-andamento"})
        cache.upsert("projetos_admin-ana", {"id": "PROJ-2026-002", "status": "pausado"})

        self.assertEqual(
            [(item["id"], item["status"]) for item in cache.read_list("projetos_admin-ana")],
            [("PROJ-2026-001", "em-andamento"), ("PROJ-2026-002", "pausado")],
        )

        cache.discard("projetos_admin-ana", "PROJ-2026-001")
        self.assertEqual([item["id"] for item in cache.read_list("projetos_admin-ana")], ["PROJ-2026-002"])

    def test_corrupt_entry_reads_as_empty(self) -> None:
        cache = InMemoryLocalCache()
        cache.set_raw("clientes_admin-ana", "{not json")
        self.assertEqual(cache.read_list("clientes_admin-ana"), [])

    def test_cache_key_is_owner_scoped(self) -> None:
        self.assertEqual(cache_key("clientes", "admin-ana"), "clientes_admin-ana")
        self.assertEqual(cache_key("portfolio", None), "portfolio")


if __name__ == "__main__":
    unittest.main()
