import unittest

from agency.core.event_bus import ContractSigned, EventBus, ProjectCreated, SolicitationCreated
from agency.observability import metrics_snapshot, reset_metrics_for_tests
from tests.helpers.agency_fixtures import AgencyHarness


class EventBusTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()

    def test_handler_execution_order_is_predictable(self) -> None:
        bus = EventBus()
        execution_trace = []

        def first_handler(_event):
            execution_trace.append("first")

        def second_handler(_event):
            execution_trace.append("second")

        bus.subscribe(SolicitationCreated, first_handler)
        bus.subscribe(SolicitationCreated, second_handler)
        bus.publish(SolicitationCreated(solicitation_id="SOL-1", client_id="cli-1", title="Logo"))

        self.assertEqual(execution_trace, ["first", "second"])

    def test_failing_handler_does_not_stop_the_others(self) -> None:
        bus = EventBus()
        received = []

        def broken_handler(_event):
            raise RuntimeError("handler quebrado")

        bus.subscribe(ProjectCreated, broken_handler)
        bus.subscribe(ProjectCreated, received.append)
        bus.publish(ProjectCreated(project_id="PROJ-2026-001", client_id="cli-1", name="Site"))

        self.assertEqual([event.project_id for event in received], ["PROJ-2026-001"])

    def test_handlers_only_receive_their_event_type(self) -> None:
        bus = EventBus()
        received = []
        bus.subscribe(ContractSigned, received.append)

        bus.publish(ProjectCreated(project_id="PROJ-2026-001", client_id="cli-1"))

        self.assertEqual(received, [])
        self.assertEqual(metrics_snapshot()["domain_events"].get("ProjectCreated"), 1)

    def test_event_defaults_are_normalized(self) -> None:
        event = SolicitationCreated(event_id="  ", actor_id="", solicitation_id="SOL-1", client_id="cli-1")

        self.assertTrue(event.event_id.strip())
        self.assertEqual(event.actor_id, "system")
        self.assertIsNotNone(event.occurred_at.tzinfo)

    def test_workflow_publishes_solicitation_created(self) -> None:
        harness = AgencyHarness()
        received = []
        harness.runtime.event_bus.subscribe(SolicitationCreated, received.append)
        client = harness.register_client()

        solicitation_id = harness.open_solicitation(client, titulo="Identidade visual")

        self.assertEqual(len(received), 1)
        event = received[0]
        self.assertEqual(event.solicitation_id, solicitation_id)
        self.assertEqual(event.client_id, client.client_id)
        self.assertEqual(event.admin_id, "admin-ana")
        self.assertEqual(event.title, "Identidade visual")


if __name__ == "__main__":
    unittest.main()
