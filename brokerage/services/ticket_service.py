"""Support tickets: creation, status workflow and the ordered message thread."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select

from brokerage.core.deps import CoreDeps
from brokerage.core.errors import ConflictError, InvalidTransitionError, ValidationError
from brokerage.core.structured_logging import build_log_context
from brokerage.db.enums import AuditAction, AuditEntityType, TicketPriority, TicketStatus
from brokerage.db.models import Ticket, TicketMessage
from brokerage.services import audit_service, workflow_engine
from brokerage.services.scope_service import Principal, apply_client_scope, require_access
from brokerage.services.store import EntityStore

logger = logging.getLogger(__name__)

ENTITY_TYPE = AuditEntityType.TICKET.value


def get_ticket(store: EntityStore, actor: Principal, ticket_id: UUID) -> Ticket:
    ticket = store.require(Ticket, ticket_id, "Ticket")
    require_access(actor, ticket.client_id)
    return ticket


def list_tickets(
    store: EntityStore,
    actor: Principal,
    status: TicketStatus | None = None,
    limit: int = 100,
) -> list[Ticket]:
    statement = apply_client_scope(select(Ticket), actor, Ticket.client_id)
    if status is not None:
        statement = statement.where(Ticket.status == TicketStatus(status))
    return store.scalars(statement.order_by(Ticket.created_at.desc()).limit(limit))


def _append_message(store: EntityStore, deps: CoreDeps, actor: Principal, ticket: Ticket, body: str) -> TicketMessage:
    """
    Claim the next sequence number with a compare-and-set on message_count.

    The write also requires the ``version`` and status read with the ticket
    and bumps the version, so a concurrent status change makes one side miss.
    """
    current = ticket.message_count
    won = store.compare_and_set(
        Ticket,
        ticket.id,
        "message_count",
        current,
        current + 1,
        guard={"version": ticket.version, "status": ticket.status},
        version=Ticket.version + 1,
        updated_at=deps.clock.now(),
    )
    if not won:
        raise ConflictError("Another message was posted at the same time", code="sequence_conflict")
    message = TicketMessage(
        ticket_id=ticket.id,
        sequence=current + 1,
        author_id=actor.user_id,
        body=body,
        created_at=deps.clock.now(),
    )
    store.add(message)
    store.flush()
    audit_service.record(
        store,
        deps.clock,
        entity_type=ENTITY_TYPE,
        entity_id=ticket.id,
        action=AuditAction.TICKET_MESSAGE_ADDED,
        actor_id=actor.user_id,
        client_id=ticket.client_id,
        changes=audit_service.field_diff(
            {"message_count": current}, {"message_count": current + 1}
        ),
    )
    return message


def create_ticket(
    store: EntityStore,
    deps: CoreDeps,
    actor: Principal,
    *,
    client_id: UUID,
    subject: str,
    priority: TicketPriority = TicketPriority.NORMAL,
    body: str | None = None,
) -> Ticket:
    """Open a ticket for a client, optionally with its first message."""
    require_access(actor, client_id)
    subject = (subject or "").strip()
    if not subject:
        raise ValidationError("Ticket subject is required")
    try:
        priority = TicketPriority(priority)
    except ValueError as exc:
        raise ValidationError(f"Unknown priority {priority!r}") from exc

    with store.unit_of_work():
        ticket = Ticket(
            client_id=client_id,
            subject=subject,
            status=TicketStatus.OPEN,
            priority=priority,
            version=1,
            message_count=0,
            created_by_id=actor.user_id,
            created_at=deps.clock.now(),
        )
        store.add(ticket)
        store.flush()
        audit_service.record(
            store,
            deps.clock,
            entity_type=ENTITY_TYPE,
            entity_id=ticket.id,
            action=AuditAction.CREATED,
            actor_id=actor.user_id,
            client_id=client_id,
            to_status=TicketStatus.OPEN,
            changes={"priority": priority.value},
        )
        if body and body.strip():
            _append_message(store, deps, actor, ticket, body.strip())
    store.refresh(ticket)

    logger.info(
        "Ticket created",
        extra=build_log_context(
            actor_id=str(actor.user_id),
            client_id=str(client_id),
            entity_type=ENTITY_TYPE,
            entity_id=str(ticket.id),
        ),
    )
    return ticket


def transition_ticket(
    store: EntityStore,
    deps: CoreDeps,
    actor: Principal,
    ticket_id: UUID,
    to_status: TicketStatus | str,
) -> Ticket:
    """
    Move a ticket along the ticket graph.

    RESOLVED stamps ``resolved_at``, CLOSED stamps ``closed_at``; reopening a
    resolved ticket clears ``resolved_at``.
    """
    ticket = get_ticket(store, actor, ticket_id)
    source, target = workflow_engine.check_transition(deps, ENTITY_TYPE, ticket.status, to_status)

    now = deps.clock.now()
    values = {}
    if target == TicketStatus.RESOLVED:
        values["resolved_at"] = now
    elif target == TicketStatus.CLOSED:
        values["closed_at"] = now
    elif source == TicketStatus.RESOLVED:
        values["resolved_at"] = None
    return workflow_engine.transition(
        store, deps, actor, ticket, target, entity_type=ENTITY_TYPE, values=values
    )


def add_ticket_message(
    store: EntityStore,
    deps: CoreDeps,
    actor: Principal,
    ticket_id: UUID,
    body: str,
) -> TicketMessage:
    """Append a message; closed tickets accept no more messages."""
    ticket = get_ticket(store, actor, ticket_id)
    body = (body or "").strip()
    if not body:
        raise ValidationError("Message body is required")
    if deps.config.ticket_graph.is_terminal(ticket.status):
        raise InvalidTransitionError(
            f"Cannot post to a {ticket.status.value} ticket",
            from_status=ticket.status.value,
        )

    with store.unit_of_work():
        message = _append_message(store, deps, actor, ticket, body)
    return message
