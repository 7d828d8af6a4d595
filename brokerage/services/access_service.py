"""Access administration - client grants, role changes, deactivation.

Principals are never deleted. Every change here is audited against the
target principal (entity_type "user").
"""

from __future__ import annotations

import logging
from typing import Iterable
from uuid import UUID

from sqlalchemy import delete, select

from brokerage.core.deps import CoreDeps
from brokerage.core.errors import AuthorizationError, NotFoundError, ValidationError
from brokerage.core.structured_logging import build_log_context
from brokerage.db.enums import ROLES_CAN_MANAGE_ACCESS, AuditAction, AuditEntityType, Role
from brokerage.db.models import Affiliate, Agent, Client, ClientGrant, Employee, User
from brokerage.services import audit_service
from brokerage.services.scope_service import Principal, require_role
from brokerage.services.store import EntityStore

logger = logging.getLogger(__name__)

ENTITY_TYPE = AuditEntityType.USER.value


def _load_target(store: EntityStore, actor: Principal, user_id: UUID, action: str) -> tuple[Role, User]:
    actor_role = require_role(actor, ROLES_CAN_MANAGE_ACCESS, action)
    target = store.require(User, user_id, "User")
    return actor_role, target


def _audit(
    store: EntityStore,
    deps: CoreDeps,
    actor: Principal,
    target: User,
    action: AuditAction,
    changes: dict,
) -> None:
    audit_service.record(
        store,
        deps.clock,
        entity_type=ENTITY_TYPE,
        entity_id=target.id,
        action=action,
        actor_id=actor.user_id,
        changes=changes,
    )


def replace_client_grants(
    store: EntityStore,
    deps: CoreDeps,
    actor: Principal,
    user_id: UUID,
    client_ids: Iterable[UUID],
) -> list[UUID]:
    """
    Replace a principal's client grants wholesale.

    Only principals linked to an affiliate can hold grants. An empty list
    removes every grant, dropping the principal back to self scope.
    """
    _, target = _load_target(store, actor, user_id, "manage client access")
    linked = store.first(select(Affiliate.id).where(Affiliate.user_id == target.id))
    if linked is None:
        raise ValidationError("Only affiliate principals can hold client grants", code="not_affiliate")

    wanted = list(dict.fromkeys(client_ids))
    if wanted:
        found = set(store.scalars(select(Client.id).where(Client.id.in_(wanted))))
        missing = [str(cid) for cid in wanted if cid not in found]
        if missing:
            raise NotFoundError(f"Clients not found: {', '.join(missing)}", code="client_not_found")

    current = store.scalars(select(ClientGrant.client_id).where(ClientGrant.user_id == target.id))
    with store.unit_of_work():
        store.execute(delete(ClientGrant).where(ClientGrant.user_id == target.id))
        for client_id in wanted:
            store.add(ClientGrant(user_id=target.id, client_id=client_id, granted_by_id=actor.user_id))
        store.flush()
        _audit(
            store,
            deps,
            actor,
            target,
            AuditAction.CLIENT_ACCESS_REPLACED,
            audit_service.field_diff(
                {"client_ids": sorted(str(c) for c in current)},
                {"client_ids": sorted(str(c) for c in wanted)},
            ),
        )

    logger.info(
        "Client access updated",
        extra=build_log_context(
            actor_id=str(actor.user_id),
            entity_type=ENTITY_TYPE,
            entity_id=str(target.id),
            client_count=len(wanted),
        ),
    )
    return wanted


def change_role(
    store: EntityStore,
    deps: CoreDeps,
    actor: Principal,
    user_id: UUID,
    role: Role | str,
) -> User:
    """Change a principal's role. Only a super admin may grant or revoke super admin."""
    actor_role, target = _load_target(store, actor, user_id, "change roles")
    try:
        new_role = Role(role)
    except ValueError as exc:
        raise ValidationError(f"Unknown role {role!r}", code="invalid_role") from exc

    old_role = Role(target.role)
    if Role.SUPER_ADMIN in (old_role, new_role) and actor_role != Role.SUPER_ADMIN:
        raise AuthorizationError("Only a super admin can grant or revoke the super admin role")
    if target.id == actor.user_id:
        raise ValidationError("You cannot change your own role", code="self_change")
    if new_role == old_role:
        return target

    with store.unit_of_work():
        target.role = new_role
        store.flush()
        _audit(
            store,
            deps,
            actor,
            target,
            AuditAction.ROLE_CHANGED,
            audit_service.field_diff({"role": old_role.value}, {"role": new_role.value}),
        )

    logger.info(
        "Role changed",
        extra=build_log_context(
            actor_id=str(actor.user_id),
            entity_type=ENTITY_TYPE,
            entity_id=str(target.id),
            old_role=old_role.value,
            new_role=new_role.value,
        ),
    )
    return target


def deactivate_user(
    store: EntityStore,
    deps: CoreDeps,
    actor: Principal,
    user_id: UUID,
) -> User:
    """Deactivate a principal and its linked employee/agent/affiliate row."""
    actor_role, target = _load_target(store, actor, user_id, "deactivate users")
    if target.id == actor.user_id:
        raise ValidationError("You cannot deactivate your own account", code="self_change")
    if Role(target.role) == Role.SUPER_ADMIN and actor_role != Role.SUPER_ADMIN:
        raise AuthorizationError("Only a super admin can deactivate a super admin")
    if not target.is_active:
        return target

    linked = None
    for model in (Employee, Agent, Affiliate):
        linked = store.first(select(model).where(model.user_id == target.id))
        if linked is not None:
            break

    with store.unit_of_work():
        target.is_active = False
        target.deactivated_at = deps.clock.now()
        if linked is not None:
            linked.is_active = False
        store.flush()
        _audit(
            store,
            deps,
            actor,
            target,
            AuditAction.USER_DEACTIVATED,
            {
                "is_active": {"old": True, "new": False},
                "linked_entity": type(linked).__name__.lower() if linked is not None else None,
            },
        )

    logger.info(
        "User deactivated",
        extra=build_log_context(
            actor_id=str(actor.user_id),
            entity_type=ENTITY_TYPE,
            entity_id=str(target.id),
            email=target.email,
        ),
    )
    return target
