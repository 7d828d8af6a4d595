"""Status transition graphs for workflow entities."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from brokerage.db.enums import ClaimStatus, Role, TicketStatus


@dataclass(frozen=True)
class WorkflowGraph:
    """
    Directed graph of legal status changes for one entity type.

    Every member of ``status_enum`` must appear as a key; terminal statuses map
    to an empty set. Construction fails if an edge names a foreign value.
    """

    entity_type: str
    status_enum: type[Enum]
    allowed: Mapping[Enum, frozenset]

    def __post_init__(self) -> None:
        members = set(self.status_enum)
        missing = members - set(self.allowed)
        if missing:
            names = ", ".join(sorted(m.value for m in missing))
            raise ValueError(f"{self.entity_type} graph has no entry for: {names}")
        for source, targets in self.allowed.items():
            if source not in members:
                raise ValueError(f"{self.entity_type} graph has unknown status {source!r}")
            unknown = set(targets) - members
            if unknown:
                raise ValueError(f"{self.entity_type} graph has unknown target(s) {unknown!r}")
            if source in targets:
                raise ValueError(f"{self.entity_type} graph has a self-loop on {source.value}")
        object.__setattr__(
            self,
            "allowed",
            MappingProxyType({k: frozenset(v) for k, v in self.allowed.items()}),
        )

    def coerce(self, status: Enum | str) -> Enum:
        """Return the enum member for ``status`` or raise ValueError."""
        return self.status_enum(status.value if isinstance(status, Enum) else status)

    def allowed_targets(self, status: Enum | str) -> frozenset:
        return self.allowed[self.coerce(status)]

    def can_transition(self, from_status: Enum | str, to_status: Enum | str) -> bool:
        try:
            source = self.coerce(from_status)
            target = self.coerce(to_status)
        except ValueError:
            return False
        return target in self.allowed[source]

    def is_terminal(self, status: Enum | str) -> bool:
        return not self.allowed_targets(status)


def build_claim_graph(*, allow_direct_decision: bool = False) -> WorkflowGraph:
    """
    Claims move forward only.

    SUBMITTED -> UNDER_REVIEW -> APPROVED | REJECTED. With
    ``allow_direct_decision`` a submitted claim may be decided without review.
    """
    submitted = {ClaimStatus.UNDER_REVIEW}
    if allow_direct_decision:
        submitted |= {ClaimStatus.APPROVED, ClaimStatus.REJECTED}
    return WorkflowGraph(
        entity_type="claim",
        status_enum=ClaimStatus,
        allowed={
            ClaimStatus.SUBMITTED: frozenset(submitted),
            ClaimStatus.UNDER_REVIEW: frozenset({ClaimStatus.APPROVED, ClaimStatus.REJECTED}),
            ClaimStatus.APPROVED: frozenset(),
            ClaimStatus.REJECTED: frozenset(),
        },
    )


def build_ticket_graph(*, allow_reopen: bool = True) -> WorkflowGraph:
    """
    Tickets bounce between triage states until resolved.

    OPEN <-> IN_PROGRESS <-> WAITING_ON_CLIENT, any of those -> RESOLVED,
    RESOLVED -> CLOSED, and (``allow_reopen``) RESOLVED -> IN_PROGRESS.
    CLOSED is terminal.
    """
    resolved = {TicketStatus.CLOSED}
    if allow_reopen:
        resolved.add(TicketStatus.IN_PROGRESS)
    return WorkflowGraph(
        entity_type="ticket",
        status_enum=TicketStatus,
        allowed={
            TicketStatus.OPEN: frozenset({TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED}),
            TicketStatus.IN_PROGRESS: frozenset(
                {TicketStatus.OPEN, TicketStatus.WAITING_ON_CLIENT, TicketStatus.RESOLVED}
            ),
            TicketStatus.WAITING_ON_CLIENT: frozenset(
                {TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED}
            ),
            TicketStatus.RESOLVED: frozenset(resolved),
            TicketStatus.CLOSED: frozenset(),
        },
    )


# Who may move a claim out of each status
CLAIM_STATUS_ACTORS: Mapping[ClaimStatus, frozenset] = MappingProxyType(
    {
        ClaimStatus.SUBMITTED: frozenset({Role.SUPER_ADMIN, Role.CLAIMS_EMPLOYEE}),
        ClaimStatus.UNDER_REVIEW: frozenset({Role.SUPER_ADMIN, Role.CLAIMS_EMPLOYEE}),
        ClaimStatus.APPROVED: frozenset(),
        ClaimStatus.REJECTED: frozenset(),
    }
)
