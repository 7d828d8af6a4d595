"""Generic status transition engine for workflow entities (claims, tickets).

A transition is one unit of work: a compare-and-set on the status column
(also bumping ``version``) plus one STATUS_CHANGED audit entry. Callers do
their own authorization first; this module only knows the graphs.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from brokerage.core.deps import CoreDeps
from brokerage.core.errors import ConflictError, InvalidTransitionError, ValidationError
from brokerage.core.structured_logging import build_log_context
from brokerage.db.enums import AuditAction
from brokerage.services import audit_service
from brokerage.services.scope_service import Principal
from brokerage.services.store import EntityStore

logger = logging.getLogger(__name__)


def check_transition(deps: CoreDeps, entity_type: str, from_status: Enum | str, to_status: Enum | str) -> tuple[Enum, Enum]:
    """
    Validate one edge against the configured graph.

    Returns the coerced (from, to) pair. Unknown status values are a
    ValidationError; legal values with no edge are an InvalidTransitionError.
    """
    graph = deps.config.graph_for(entity_type)
    try:
        source = graph.coerce(from_status)
        target = graph.coerce(to_status)
    except ValueError as exc:
        raise ValidationError(f"Unknown {entity_type} status", code="invalid_status") from exc
    if not graph.can_transition(source, target):
        raise InvalidTransitionError(
            f"Cannot move {entity_type} from {source.value} to {target.value}",
            from_status=source.value,
            to_status=target.value,
        )
    return source, target


def allowed_transitions(deps: CoreDeps, entity_type: str, status: Enum | str) -> list[str]:
    """Sorted status values reachable in one step (empty for terminal)."""
    graph = deps.config.graph_for(entity_type)
    return sorted(s.value for s in graph.allowed_targets(status))


def transition(
    store: EntityStore,
    deps: CoreDeps,
    actor: Principal,
    entity: Any,
    to_status: Enum | str,
    *,
    entity_type: str,
    values: dict[str, Any] | None = None,
    changes: dict[str, Any] | None = None,
) -> Any:
    """
    Move ``entity`` to ``to_status``.

    ``values`` are extra columns written by the same UPDATE (timestamps set on
    entering a status, for example). Raises InvalidTransitionError for an
    illegal edge and ConflictError when another writer changed the row first.
    The write is keyed on ``version``, which every writer of a versioned
    entity bumps, so status changes and other edits exclude each other.
    """
    model = type(entity)
    source, target = check_transition(deps, entity_type, entity.status, to_status)
    now = deps.clock.now()

    with store.unit_of_work():
        won = store.compare_and_set(
            model,
            entity.id,
            "version",
            entity.version,
            model.version + 1,
            guard={"status": source},
            status=target,
            updated_at=now,
            **(values or {}),
        )
        if not won:
            raise ConflictError(
                f"{entity_type.capitalize()} status changed concurrently",
                code="status_conflict",
            )
        audit_service.record(
            store,
            deps.clock,
            entity_type=entity_type,
            entity_id=entity.id,
            action=AuditAction.STATUS_CHANGED,
            actor_id=actor.user_id,
            client_id=entity.client_id,
            from_status=source,
            to_status=target,
            changes=changes,
        )
    store.refresh(entity)

    logger.info(
        "Status changed",
        extra=build_log_context(
            actor_id=str(actor.user_id),
            client_id=str(entity.client_id),
            entity_type=entity_type,
            entity_id=str(entity.id),
            from_status=source.value,
            to_status=target.value,
        ),
    )
    return entity
