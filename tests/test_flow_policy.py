import unittest

from agency.workflow.flow_policy import (
    FLOW_POLICY,
    FUNNEL_STAGES,
    PROCESS_STAGES,
    PROJECT_TRANSITIONS,
    advance_funnel,
    build_process_steps,
    canonical_status,
    flow_meta,
    funnel_transition_allowed,
    project_transition_allowed,
    stage_for_solicitation_status,
)


class FlowPolicyTest(unittest.TestCase):
    def test_required_process_stages_exist(self) -> None:
        keys = [item["key"] for item in PROCESS_STAGES]
        self.assertEqual(keys, ["solicitacao", "proposta", "contrato", "projeto", "entrega"])

    def test_only_terminal_statuses_lack_a_primary_action(self) -> None:
        terminal = {("solicitacao", "rejeitada"), ("projeto", "concluido"), ("projeto", "cancelado"), ("servico", "concluido")}
        for stage_name, status_map in FLOW_POLICY.items():
            for status_name, policy in status_map.items():
                if (stage_name, status_name) in terminal:
                    continue
                self.assertTrue(policy.get("primary_action"), f"sem acao principal em {stage_name}:{status_name}")

    def test_primary_action_is_in_allowed_actions(self) -> None:
        for stage_name, status_map in FLOW_POLICY.items():
            for status_name, policy in status_map.items():
                primary_action = policy.get("primary_action")
                allowed_actions = policy.get("allowed_actions") or []
                if primary_action:
                    self.assertIn(primary_action, allowed_actions, f"primary fora de allowed em {stage_name}:{status_name}")

    def test_every_project_status_has_a_transition_entry(self) -> None:
        self.assertEqual(set(PROJECT_TRANSITIONS), set(FLOW_POLICY["projeto"]))

    def test_synonyms_resolve_to_canonical_status(self) -> None:
        self.assertEqual(canonical_status("solicitacao", "Proposta-Enviada"), "proposta-criada")
        self.assertEqual(canonical_status("projeto", "em_andamento"), "em-andamento")
        self.assertEqual(canonical_status("projeto", "finalizado"), "concluido")
        self.assertEqual(canonical_status("projeto", "desconhecido"), "desconhecido")

    def test_flow_meta_for_unknown_status_has_no_actions(self) -> None:
        meta = flow_meta("solicitacao", "arquivada")
        self.assertEqual(meta["allowed_actions"], [])
        self.assertIsNone(meta["primary_action"])


class ProjectTransitionTest(unittest.TestCase):
    def test_admin_transitions(self) -> None:
        self.assertTrue(project_transition_allowed("planejamento", "em-andamento"))
        self.assertTrue(project_transition_allowed("em-andamento", "aguardando-aprovacao"))
        self.assertTrue(project_transition_allowed("revisao", "concluido"))
        self.assertTrue(project_transition_allowed("aprovacao", "em_andamento"))

    def test_concluded_only_through_review_or_client_approval(self) -> None:
        self.assertFalse(project_transition_allowed("em-andamento", "concluido"))
        self.assertFalse(project_transition_allowed("aguardando-aprovacao", "concluido"))
        self.assertFalse(project_transition_allowed("planejamento", "concluido"))

    def test_terminal_statuses_are_final(self) -> None:
        for target in PROJECT_TRANSITIONS:
            self.assertFalse(project_transition_allowed("concluido", target))
            self.assertFalse(project_transition_allowed("cancelado", target))


class FunnelTest(unittest.TestCase):
    def test_funnel_only_moves_forward(self) -> None:
        self.assertTrue(funnel_transition_allowed("prospect", "proposta"))
        self.assertTrue(funnel_transition_allowed("negociacao", "negociacao"))
        self.assertFalse(funnel_transition_allowed("negociacao", "contato"))
        self.assertFalse(funnel_transition_allowed("prospect", "desconhecida"))

    def test_lost_is_reachable_from_everywhere_and_final(self) -> None:
        for stage in FUNNEL_STAGES:
            self.assertTrue(funnel_transition_allowed(stage, "perdido"))
        for stage in FUNNEL_STAGES[:-1]:
            self.assertFalse(funnel_transition_allowed("perdido", stage))

    def test_advance_never_moves_backwards(self) -> None:
        self.assertEqual(advance_funnel("prospect", "contato"), "contato")
        self.assertEqual(advance_funnel("contratado", "proposta"), "contratado")
        self.assertEqual(advance_funnel("perdido", "negociacao"), "perdido")
        self.assertEqual(advance_funnel(None, "contato"), "contato")
        self.assertEqual(advance_funnel("etapa-velha", "proposta"), "proposta")


class ProcessStepsTest(unittest.TestCase):
    def test_steps_mark_completed_current_and_future(self) -> None:
        steps = build_process_steps("contrato")
        states = [step["state"] for step in steps]
        self.assertEqual(states, ["completed", "completed", "current", "future", "future"])

    def test_solicitation_stage_moves_to_project_once_linked(self) -> None:
        self.assertEqual(stage_for_solicitation_status("proposta-enviada"), "proposta")
        self.assertEqual(stage_for_solicitation_status("concluida"), "contrato")
        self.assertEqual(stage_for_solicitation_status("concluida", has_project=True), "projeto")


if __name__ == "__main__":
    unittest.main()
