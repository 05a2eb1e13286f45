from agency.core.event_bus import (
    ClientRegistered,
    ContractSigned,
    DomainEvent,
    EventBus,
    MessagePosted,
    ProjectApproved,
    ProjectCreated,
    ProjectStatusChanged,
    ProposalAccepted,
    ProposalSubmitted,
    ServiceFinalized,
    SolicitationCreated,
    SolicitationRejected,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "ClientRegistered",
    "SolicitationCreated",
    "ProposalSubmitted",
    "ProposalAccepted",
    "SolicitationRejected",
    "ContractSigned",
    "ProjectCreated",
    "ProjectStatusChanged",
    "ProjectApproved",
    "MessagePosted",
    "ServiceFinalized",
]
