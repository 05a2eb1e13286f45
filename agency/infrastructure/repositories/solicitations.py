from __future__ import annotations

import logging
from typing import Iterable, List

from agency.domain.models import Contract, Proposal, Solicitation
from agency.errors import StoreUnavailableError
from agency.infrastructure.local_cache import cache_key
from agency.infrastructure.repositories.base import LoadScope
from agency.infrastructure.repositories.entity_repository import EntityRepository
from agency.workflow.derivations import (
    contract_from_solicitation,
    contracts_from_solicitations,
    proposals_from_solicitations,
)


LOGGER = logging.getLogger("agency")


class SolicitationRepository(EntityRepository[Solicitation]):
    collection = "solicitacoes_clientes"
    cache_name = "solicitacoes"
    model = Solicitation

    def for_client(self, client_id: str) -> List[Solicitation]:
        return self.query("clienteId", client_id)

    def proposals(self, solicitations: Iterable[Solicitation] | None = None) -> List[Proposal]:
        source = list(solicitations) if solicitations is not None else self.load(LoadScope.all())
        proposals = proposals_from_solicitations(source)
        self._cache_derived("propostas", [proposal.to_document() for proposal in proposals])
        return proposals

    def contracts(self, solicitations: Iterable[Solicitation] | None = None) -> List[Contract]:
        source = list(solicitations) if solicitations is not None else self.load(LoadScope.all())
        contracts = contracts_from_solicitations(source)
        self._cache_derived("contratos", [contract.to_document() for contract in contracts])
        return contracts

    def find_contract(self, contract_id: str) -> tuple[Solicitation, Contract] | None:
        """Locate the solicitation embedding `contract_id` (or whose own id was given)."""
        wanted = str(contract_id or "").strip()
        if not wanted:
            return None
        candidates = self.query("contratoId", wanted)
        if not candidates:
            direct = self.get(wanted)
            candidates = [direct] if direct is not None else []
        for solicitation in candidates:
            contract = contract_from_solicitation(solicitation)
            if contract is not None:
                return solicitation, contract
        return None

    def contract_id_in_use(self, contract_id: str) -> bool:
        return bool(self.query("contratoId", contract_id))

    def cache_contract(self, contract: Contract) -> None:
        try:
            self.cache.upsert(cache_key("contratos", self.owner_id), contract.to_document(), id_field="solicitacaoId")
        except StoreUnavailableError:
            LOGGER.warning("local_cache_write_failed", extra={"collection": "contratos"})

    def cached_contracts(self) -> List[Contract]:
        documents = self.cache.read_list(cache_key("contratos", self.owner_id))
        return [Contract.from_document(document) for document in documents]

    def _cache_derived(self, name: str, documents: List[dict]) -> None:
        try:
            self.cache.write_list(cache_key(name, self.owner_id), documents)
        except StoreUnavailableError:
            LOGGER.warning("local_cache_write_failed", extra={"collection": name})
