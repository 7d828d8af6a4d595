"""Tests for access administration: grants, roles, deactivation."""

import uuid

import pytest

from brokerage.core.errors import AuthorizationError, NotFoundError, ValidationError
from brokerage.db.enums import AuditAction, Role
from brokerage.services import access_service, audit_service
from brokerage.services.scope_service import NO_SCOPE, ClientScope, SelfScope, load_principal, resolve_scope

from conftest import NOW


def _user_trail(store, deps, user):
    return audit_service.list_entries(store, deps.config, "user", user.id).items


# =============================================================================
# Client grants
# =============================================================================


def test_replace_grants_widens_then_restores_self_scope(store, deps, world):
    admin = world.principal("admin_employee")
    target = world.user("affiliate")

    granted = access_service.replace_client_grants(
        store, deps, admin, target.id, [world.client_b.id, world.client_a.id, world.client_b.id]
    )

    assert granted == [world.client_b.id, world.client_a.id]
    scope = resolve_scope(load_principal(store, target.id))
    assert scope == ClientScope(frozenset({world.client_a.id, world.client_b.id}))
    entry = _user_trail(store, deps, target)[-1]
    assert entry.action == AuditAction.CLIENT_ACCESS_REPLACED.value
    assert entry.changes["client_ids"]["old"] == []
    assert entry.changes["client_ids"]["new"] == sorted([str(world.client_a.id), str(world.client_b.id)])

    access_service.replace_client_grants(store, deps, admin, target.id, [])
    assert isinstance(resolve_scope(load_principal(store, target.id)), SelfScope)


def test_grants_need_affiliate_principal(store, deps, world):
    with pytest.raises(ValidationError) as exc:
        access_service.replace_client_grants(
            store, deps, world.principal("admin_employee"), world.user("agent").id, [world.client_a.id]
        )
    assert exc.value.code == "not_affiliate"


def test_grants_reject_unknown_client(store, deps, world):
    with pytest.raises(NotFoundError):
        access_service.replace_client_grants(
            store, deps, world.principal("admin_employee"), world.user("affiliate").id, [uuid.uuid4()]
        )


@pytest.mark.parametrize("actor", ["client_admin", "claims_employee", "agent", "affiliate"])
def test_grants_need_access_admin(store, deps, world, actor):
    with pytest.raises(AuthorizationError):
        access_service.replace_client_grants(
            store, deps, world.principal(actor), world.user("affiliate").id, [world.client_a.id]
        )


# =============================================================================
# Roles
# =============================================================================


def test_change_role_is_audited(store, deps, world):
    target = world.user("agent")

    updated = access_service.change_role(store, deps, world.principal("admin_employee"), target.id, "operations_employee")

    assert updated.role == Role.OPERATIONS_EMPLOYEE
    entry = _user_trail(store, deps, target)[-1]
    assert entry.action == AuditAction.ROLE_CHANGED.value
    assert entry.changes == {"role": {"old": "agent", "new": "operations_employee"}}


def test_change_role_same_role_is_noop(store, deps, world):
    target = world.user("agent")
    access_service.change_role(store, deps, world.principal("admin_employee"), target.id, Role.AGENT)
    assert _user_trail(store, deps, target) == []


def test_super_admin_role_is_guarded(store, deps, world):
    target = world.user("agent")
    with pytest.raises(AuthorizationError):
        access_service.change_role(store, deps, world.principal("admin_employee"), target.id, Role.SUPER_ADMIN)
    with pytest.raises(AuthorizationError):
        access_service.change_role(
            store, deps, world.principal("admin_employee"), world.user("super_admin").id, Role.AGENT
        )

    promoted = access_service.change_role(store, deps, world.principal("super_admin"), target.id, Role.SUPER_ADMIN)
    assert promoted.role == Role.SUPER_ADMIN


def test_cannot_change_own_role(store, deps, world):
    actor = world.principal("admin_employee")
    with pytest.raises(ValidationError) as exc:
        access_service.change_role(store, deps, actor, actor.user_id, Role.AGENT)
    assert exc.value.code == "self_change"


def test_unknown_role(store, deps, world):
    with pytest.raises(ValidationError):
        access_service.change_role(store, deps, world.principal("admin_employee"), world.user("agent").id, "wizard")


# =============================================================================
# Deactivation
# =============================================================================


def test_deactivate_removes_all_access(db, store, deps, world):
    target = world.user("affiliate")

    access_service.deactivate_user(store, deps, world.principal("admin_employee"), target.id)

    assert target.is_active is False
    assert target.deactivated_at == NOW
    db.refresh(world.owner_a)
    assert world.owner_a.is_active is False
    assert resolve_scope(load_principal(store, target.id)) == NO_SCOPE
    entry = _user_trail(store, deps, target)[-1]
    assert entry.action == AuditAction.USER_DEACTIVATED.value
    assert entry.changes["linked_entity"] == "affiliate"


def test_deactivate_is_idempotent(store, deps, world):
    target = world.user("agent")
    admin = world.principal("admin_employee")
    access_service.deactivate_user(store, deps, admin, target.id)
    access_service.deactivate_user(store, deps, admin, target.id)
    assert len(_user_trail(store, deps, target)) == 1


def test_deactivate_guards(store, deps, world):
    admin = world.principal("admin_employee")
    with pytest.raises(ValidationError):
        access_service.deactivate_user(store, deps, admin, admin.user_id)
    with pytest.raises(AuthorizationError):
        access_service.deactivate_user(store, deps, admin, world.user("super_admin").id)
    with pytest.raises(NotFoundError):
        access_service.deactivate_user(store, deps, admin, uuid.uuid4())
