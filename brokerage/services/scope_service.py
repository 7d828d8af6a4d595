"""Scope resolution - which clients (and rows) a principal may act upon.

Access rules:
- Inactive principals: nothing
- Global roles (SUPER_ADMIN, employees, AGENT): every client
- Scoped roles (CLIENT_ADMIN, AFFILIATE) with client grants: the granted clients
- Scoped roles without grants: their own affiliate's client, and within it only
  their own affiliate row plus its dependents

``resolve_scope`` and ``has_access`` are pure and total: they read a
``Principal`` snapshot, never touch the store, and return "no access" for
anything malformed instead of raising.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Union
from uuid import UUID

from sqlalchemy import false, select, true

from brokerage.core.errors import AuthorizationError, NotFoundError
from brokerage.core.structured_logging import build_log_context
from brokerage.db.enums import AffiliateType, GLOBAL_SCOPE_ROLES, Role, SCOPED_ROLES
from brokerage.db.models import Affiliate, ClientGrant, User
from brokerage.services.store import EntityStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Immutable snapshot of an authenticated actor, loaded once per request."""

    user_id: UUID
    role: Role | str | None
    is_active: bool = True
    email: str | None = None
    granted_client_ids: frozenset = field(default_factory=frozenset)
    affiliate_id: UUID | None = None
    affiliate_client_id: UUID | None = None
    affiliate_type: AffiliateType | None = None
    dependent_ids: frozenset = field(default_factory=frozenset)

    @property
    def role_enum(self) -> Role | None:
        """Role as enum, or None when unknown."""
        if isinstance(self.role, Role):
            return self.role
        try:
            return Role(self.role)
        except ValueError:
            return None


# =============================================================================
# Scope sets
# =============================================================================


@dataclass(frozen=True)
class GlobalScope:
    """Unconstrained."""

    def contains_client(self, client_id: UUID | None) -> bool:
        return client_id is not None


@dataclass(frozen=True)
class ClientScope:
    """Explicit set of client ids (empty = no access)."""

    client_ids: frozenset = field(default_factory=frozenset)

    def contains_client(self, client_id: UUID | None) -> bool:
        return client_id is not None and client_id in self.client_ids


@dataclass(frozen=True)
class SelfScope:
    """
    One client, narrowed to a set of affiliate rows.

    Client-level checks pass for ``client_id``; row-level checks must also
    consult ``affiliate_ids``.
    """

    client_id: UUID
    affiliate_ids: frozenset

    def contains_client(self, client_id: UUID | None) -> bool:
        return client_id is not None and client_id == self.client_id

    def contains_affiliate(self, affiliate_id: UUID | None) -> bool:
        return affiliate_id is not None and affiliate_id in self.affiliate_ids


ScopeSet = Union[GlobalScope, ClientScope, SelfScope]

GLOBAL = GlobalScope()
NO_SCOPE = ClientScope()


def resolve_scope(principal: Principal | None) -> ScopeSet:
    """Compute a principal's visible-client set. Never raises."""
    try:
        if principal is None or not principal.is_active:
            return NO_SCOPE
        role = principal.role_enum
        if role in GLOBAL_SCOPE_ROLES:
            return GLOBAL
        if role not in SCOPED_ROLES:
            return NO_SCOPE
        if principal.granted_client_ids:
            return ClientScope(frozenset(principal.granted_client_ids))
        if principal.affiliate_id is None or principal.affiliate_client_id is None:
            return NO_SCOPE
        return SelfScope(
            client_id=principal.affiliate_client_id,
            affiliate_ids=frozenset({principal.affiliate_id}) | frozenset(principal.dependent_ids),
        )
    except (AttributeError, TypeError):
        return NO_SCOPE


def has_access(principal: Principal | None, client_id: UUID | None) -> bool:
    """True when ``client_id`` is inside the principal's scope. Never raises."""
    try:
        return resolve_scope(principal).contains_client(client_id)
    except (AttributeError, TypeError):
        return False


def can_access_affiliate(principal: Principal | None, affiliate: Affiliate | None) -> bool:
    """Row-level check: client scope plus the self-scope affiliate predicate."""
    if affiliate is None:
        return False
    return has_row_access(principal, affiliate.client_id, affiliate.id)


def has_row_access(principal: Principal | None, client_id: UUID | None, affiliate_id: UUID | None) -> bool:
    """Client check plus, for self-scoped principals, the affiliate predicate."""
    scope = resolve_scope(principal)
    if not scope.contains_client(client_id):
        return False
    if isinstance(scope, SelfScope):
        return scope.contains_affiliate(affiliate_id)
    return True


def _deny(principal: Principal | None, client_id: UUID | None, message: str) -> AuthorizationError:
    logger.warning(
        "Scope check denied",
        extra=build_log_context(
            actor_id=str(principal.user_id) if principal else None,
            client_id=str(client_id) if client_id else None,
        ),
    )
    return AuthorizationError(message)


def require_access(principal: Principal | None, client_id: UUID | None) -> None:
    """Raise AuthorizationError unless ``has_access``."""
    if has_access(principal, client_id):
        return
    raise _deny(principal, client_id, "You do not have access to this client")


def require_row_access(principal: Principal | None, client_id: UUID | None, affiliate_id: UUID | None) -> None:
    """Raise AuthorizationError unless ``has_row_access``."""
    if has_row_access(principal, client_id, affiliate_id):
        return
    raise _deny(principal, client_id, "You do not have access to this record")


def require_role(principal: Principal | None, roles: frozenset, action: str) -> Role:
    """Raise AuthorizationError unless the (active) principal holds one of ``roles``."""
    role = principal.role_enum if principal is not None and principal.is_active else None
    if role is None or role not in roles:
        logger.warning(
            "Role check denied",
            extra=build_log_context(
                actor_id=str(principal.user_id) if principal else None,
                action=action,
                role=role.value if role else None,
            ),
        )
        raise AuthorizationError(f"Your role cannot {action}")
    return role


def apply_scope(statement, principal: Principal | None, client_column, affiliate_column=None):
    """
    Narrow a select() to the principal's scope.

    ``affiliate_column`` enables the row-level predicate for self-scoped
    principals; without it they see nothing (fail closed).
    """
    scope = resolve_scope(principal)
    if isinstance(scope, GlobalScope):
        return statement.where(true())
    if isinstance(scope, ClientScope):
        if not scope.client_ids:
            return statement.where(false())
        return statement.where(client_column.in_(scope.client_ids))
    if affiliate_column is None:
        return statement.where(false())
    return statement.where(
        client_column == scope.client_id,
        affiliate_column.in_(scope.affiliate_ids),
    )


def apply_client_scope(statement, principal: Principal | None, client_column):
    """Like ``apply_scope`` for client-level records (no affiliate predicate)."""
    scope = resolve_scope(principal)
    if isinstance(scope, SelfScope):
        return statement.where(client_column == scope.client_id)
    return apply_scope(statement, principal, client_column)


# =============================================================================
# Loading
# =============================================================================


def load_principal(store: EntityStore, user_id: UUID) -> Principal:
    """Build a Principal snapshot from the store (the only I/O in this module)."""
    user = store.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", code="user_not_found")
    return principal_from_user(store, user)


def principal_from_user(store: EntityStore, user: User) -> Principal:
    grants = frozenset(
        store.scalars(select(ClientGrant.client_id).where(ClientGrant.user_id == user.id))
    )
    affiliate = store.first(select(Affiliate).where(Affiliate.user_id == user.id))
    dependent_ids: frozenset = frozenset()
    if affiliate is not None and affiliate.affiliate_type == AffiliateType.OWNER:
        dependent_ids = frozenset(
            store.scalars(
                select(Affiliate.id).where(Affiliate.primary_affiliate_id == affiliate.id)
            )
        )
    return Principal(
        user_id=user.id,
        role=user.role,
        is_active=user.is_active,
        email=user.email,
        granted_client_ids=grants,
        affiliate_id=affiliate.id if affiliate else None,
        affiliate_client_id=affiliate.client_id if affiliate else None,
        affiliate_type=affiliate.affiliate_type if affiliate else None,
        dependent_ids=dependent_ids,
    )
