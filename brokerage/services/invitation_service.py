"""Invitation lifecycle: issue, validate, accept, resend, revoke, bulk invite.

Only PENDING invitations move; ACCEPTED, EXPIRED and REVOKED are terminal.
Expiry is derived lazily from ``expires_at``. Operations that run into a
PENDING row past its expiry rewrite it to EXPIRED (with an audit entry)
before failing; ``validate`` is read-only and never writes.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any
from uuid import UUID

import pydantic
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from brokerage.core.deps import CoreDeps, store_scope
from brokerage.core.errors import (
    AlreadyExistsError,
    AuthorizationError,
    ConflictError,
    CoreError,
    ExpiredError,
    InvalidTransitionError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from brokerage.core.structured_logging import build_log_context, hash_email
from brokerage.core.tokens import token_hint
from brokerage.db.enums import (
    AFFILIATE_ROLES,
    AGENT_ROLES,
    BROKER_EMPLOYEES,
    EMPLOYEE_ROLES,
    ROLES_CAN_INVITE_AFFILIATES,
    ROLES_CAN_INVITE_EMPLOYEES,
    AuditAction,
    AuditEntityType,
    InvitationStatus,
    InvitationType,
    Role,
)
from brokerage.db.models import Affiliate, Agent, Employee, Invitation, User
from brokerage.schemas.invitation import (
    AcceptedInvitation,
    AffiliateInvitePayload,
    AgentInvitePayload,
    BulkInviteItem,
    BulkInviteResult,
    EmployeeInvitePayload,
    InvitationIssue,
    InvitationValidation,
)
from brokerage.services import audit_service
from brokerage.services.notification_service import notify_safely
from brokerage.services.scope_service import Principal, apply_scope, has_access, require_role
from brokerage.services.store import EntityStore

logger = logging.getLogger(__name__)

MAX_TOKEN_ATTEMPTS = 5

ROLES_BY_TYPE = {
    InvitationType.EMPLOYEE: EMPLOYEE_ROLES,
    InvitationType.AGENT: AGENT_ROLES,
    InvitationType.AFFILIATE: AFFILIATE_ROLES,
}

PAYLOAD_BY_TYPE = {
    InvitationType.EMPLOYEE: EmployeeInvitePayload,
    InvitationType.AGENT: AgentInvitePayload,
    InvitationType.AFFILIATE: AffiliateInvitePayload,
}

ENTITY_BY_TYPE = {
    InvitationType.EMPLOYEE: Employee,
    InvitationType.AGENT: Agent,
    InvitationType.AFFILIATE: Affiliate,
}


# =============================================================================
# Helpers
# =============================================================================


def effective_status(invitation: Invitation, now: datetime) -> InvitationStatus:
    """Stored status, except a PENDING row past its expiry reads as EXPIRED."""
    if invitation.status == InvitationStatus.PENDING and now > invitation.expires_at:
        return InvitationStatus.EXPIRED
    return invitation.status


def _find_by_token(store: EntityStore, token: str) -> Invitation | None:
    if not token:
        return None
    return store.first(select(Invitation).where(Invitation.token == token))


def _mint_token(store: EntityStore, deps: CoreDeps) -> str:
    for _ in range(MAX_TOKEN_ATTEMPTS):
        token = deps.tokens()
        taken = store.scalar(select(func.count(Invitation.id)).where(Invitation.token == token))
        if not taken:
            return token
    raise ConflictError("Could not mint a unique invitation token")


def _audit(
    store: EntityStore,
    deps: CoreDeps,
    invitation: Invitation,
    action: AuditAction,
    *,
    actor_id: UUID | None,
    from_status: InvitationStatus | None = None,
    to_status: InvitationStatus | None = None,
    changes: dict[str, Any] | None = None,
) -> None:
    audit_service.record(
        store,
        deps.clock,
        entity_type=AuditEntityType.INVITATION.value,
        entity_id=invitation.id,
        action=action,
        actor_id=actor_id,
        client_id=invitation.client_id,
        from_status=from_status,
        to_status=to_status,
        changes=changes,
    )


def _expire(store: EntityStore, deps: CoreDeps, invitation: Invitation) -> bool:
    """Write back a lazily-expired invitation. Returns False if someone else moved it."""
    with store.unit_of_work():
        changed = store.compare_and_set(
            Invitation,
            invitation.id,
            "status",
            InvitationStatus.PENDING,
            InvitationStatus.EXPIRED,
        )
        if changed:
            _audit(
                store,
                deps,
                invitation,
                AuditAction.INVITATION_EXPIRED,
                actor_id=None,
                from_status=InvitationStatus.PENDING,
                to_status=InvitationStatus.EXPIRED,
            )
    if changed:
        logger.info(
            "Invitation marked expired",
            extra=build_log_context(entity_type="invitation", entity_id=str(invitation.id)),
        )
    return changed


def _require_pending(store: EntityStore, deps: CoreDeps, invitation: Invitation, action: str) -> None:
    """InvalidTransitionError unless the invitation is effectively PENDING."""
    status = effective_status(invitation, deps.clock.now())
    if status == InvitationStatus.PENDING:
        return
    if status == InvitationStatus.EXPIRED and invitation.status == InvitationStatus.PENDING:
        _expire(store, deps, invitation)
    raise InvalidTransitionError(
        f"Cannot {action} an invitation that is {status.value}",
        from_status=status.value,
    )


def _check_role_matches_type(invitation_type: InvitationType, role: Role) -> None:
    if role not in ROLES_BY_TYPE[invitation_type]:
        raise ValidationError(
            f"Role {role.value} cannot be granted by a {invitation_type.value} invitation",
            code="role_type_mismatch",
        )


def _authorize_type(inviter: Principal, invitation_type: InvitationType, role: Role) -> Role:
    """Role-level authorization for inviting ``role`` via ``invitation_type``."""
    if invitation_type == InvitationType.AFFILIATE:
        inviter_role = require_role(inviter, ROLES_CAN_INVITE_AFFILIATES, "invite affiliates")
    else:
        inviter_role = require_role(inviter, ROLES_CAN_INVITE_EMPLOYEES, "invite staff")
    if role == Role.SUPER_ADMIN and inviter_role != Role.SUPER_ADMIN:
        raise AuthorizationError("Only a super admin can grant the super admin role")
    return inviter_role


def _authorize_affiliate_target(inviter: Principal, inviter_role: Role, affiliate: Affiliate) -> None:
    """Broker staff reach every client; CLIENT_ADMIN only its granted clients."""
    if inviter_role in BROKER_EMPLOYEES:
        return
    if not has_access(inviter, affiliate.client_id):
        logger.warning(
            "Affiliate invitation outside inviter scope",
            extra=build_log_context(
                actor_id=str(inviter.user_id),
                client_id=str(affiliate.client_id),
                entity_type="affiliate",
                entity_id=str(affiliate.id),
            ),
        )
        raise AuthorizationError("You do not have access to this affiliate")


def _parse_payload(invitation_type: InvitationType, payload: Any) -> pydantic.BaseModel:
    model = PAYLOAD_BY_TYPE[invitation_type]
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload or {})
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid {invitation_type.value} invitation data: {exc.errors()[0]['msg']}") from exc


def _linked_entities(store: EntityStore, user_id: UUID) -> list[tuple[InvitationType, UUID]]:
    """Every Employee/Agent/Affiliate row bound to ``user_id``."""
    linked = []
    for invitation_type, model in ENTITY_BY_TYPE.items():
        for row_id in store.scalars(select(model.id).where(model.user_id == user_id)):
            linked.append((invitation_type, row_id))
    return linked


def _reusable_principal(
    store: EntityStore,
    email: str,
    invitation_type: InvitationType,
    affiliate_id: UUID | None = None,
) -> User | None:
    """
    Existing principal an invitation for ``email`` may take over, if any.

    A principal is bound to at most one business entity. An active one is
    never taken over; an inactive one only to revive its own entity.

    Raises:
        ValidationError(account_exists): the email belongs to an account that
            cannot be reused for this invitation
    """
    user = store.first(select(User).where(func.lower(User.email) == email.lower()))
    if user is None:
        return None
    if user.is_active:
        raise ValidationError("An active account already exists for this email", code="account_exists")
    for linked_type, linked_id in _linked_entities(store, user.id):
        foreign_affiliate = linked_type == InvitationType.AFFILIATE and linked_id != affiliate_id
        if linked_type != invitation_type or foreign_affiliate:
            raise ValidationError(
                "This email belongs to an account bound to another entity", code="account_exists"
            )
    return user


def _pending_statement(email: str, invitation_type: InvitationType, affiliate_id: UUID | None):
    conditions = [func.lower(Invitation.email) == email, Invitation.invitation_type == invitation_type]
    statement = select(Invitation).where(Invitation.status == InvitationStatus.PENDING)
    if affiliate_id is not None:
        return statement.where((Invitation.affiliate_id == affiliate_id) | (conditions[0] & conditions[1]))
    return statement.where(*conditions)


def _clear_pending(
    store: EntityStore,
    deps: CoreDeps,
    email: str,
    invitation_type: InvitationType,
    affiliate_id: UUID | None = None,
) -> None:
    """
    AlreadyExistsError if a live PENDING invitation blocks a new one.

    Stale PENDING rows (past expiry) are written back as EXPIRED instead.
    Each write-back commits on its own, so it stays even if the issue that
    triggered it fails later; expiry is derived from the clock either way.
    """
    now = deps.clock.now()
    for pending in store.scalars(_pending_statement(email, invitation_type, affiliate_id)):
        if effective_status(pending, now) == InvitationStatus.PENDING:
            raise AlreadyExistsError(
                "A pending invitation already exists for this invitee",
                code="invitation_pending",
            )
        _expire(store, deps, pending)


def _invitee_name(store: EntityStore, invitation: Invitation) -> str | None:
    if invitation.invitation_type == InvitationType.AFFILIATE:
        affiliate = store.get(Affiliate, invitation.affiliate_id)
        return affiliate.full_name if affiliate else None
    data = invitation.entity_data or {}
    name = f"{data.get('first_name', '')} {data.get('last_name', '')}".strip()
    return name or None


# =============================================================================
# Issue
# =============================================================================


def issue(
    store: EntityStore,
    deps: CoreDeps,
    inviter: Principal,
    email: str | None,
    invitation_type: InvitationType,
    role: Role,
    payload: Any = None,
) -> Invitation:
    """
    Create a PENDING invitation and hand its token to the notifier.

    For AFFILIATE invitations ``payload`` names the affiliate to bind and
    ``email`` may be omitted (the affiliate's email is used).

    Raises:
        AuthorizationError: inviter may not grant ``role``/``invitation_type``
        ValidationError: bad input, ineligible affiliate, or email already has an account
        AlreadyExistsError: a live PENDING invitation exists for this invitee
    """
    invitation_type = InvitationType(invitation_type)
    role = Role(role)
    inviter_role = _authorize_type(inviter, invitation_type, role)
    _check_role_matches_type(invitation_type, role)
    parsed = _parse_payload(invitation_type, payload)

    affiliate: Affiliate | None = None
    client_id: UUID | None = None
    entity_data: dict | None = None
    if isinstance(parsed, AffiliateInvitePayload):
        affiliate = store.require(Affiliate, parsed.affiliate_id, "Affiliate")
        _authorize_affiliate_target(inviter, inviter_role, affiliate)
        if not affiliate.email:
            raise ValidationError("Affiliate has no email address", code="missing_email")
        if affiliate.user_id:
            raise ValidationError(
                "Affiliate already has a linked user account", code="account_exists"
            )
        if not affiliate.is_active:
            raise ValidationError("Cannot invite an inactive affiliate", code="inactive")
        email = email or affiliate.email
        if email.strip().lower() != affiliate.email.strip().lower():
            raise ValidationError("Email does not match the affiliate's email", code="email_mismatch")
        client_id = affiliate.client_id
    else:
        entity_data = parsed.model_dump()

    try:
        request = InvitationIssue(email=email, invitation_type=invitation_type, role=role)
    except pydantic.ValidationError as exc:
        raise ValidationError("Invalid email address", code="invalid_email") from exc
    email = request.email

    affiliate_id = affiliate.id if affiliate else None
    _reusable_principal(store, email, invitation_type, affiliate_id)
    _clear_pending(store, deps, email, invitation_type, affiliate_id)

    now = deps.clock.now()
    try:
        with store.unit_of_work():
            token = _mint_token(store, deps)
            invitation = Invitation(
                token=token,
                email=email,
                invitation_type=invitation_type,
                role=role,
                status=InvitationStatus.PENDING,
                expires_at=now + deps.config.invitation_window,
                client_id=client_id,
                affiliate_id=affiliate_id,
                entity_data=entity_data,
                created_by_id=inviter.user_id,
                created_at=now,
                resend_count=0,
            )
            store.add(invitation)
            store.flush()
            _audit(
                store,
                deps,
                invitation,
                AuditAction.INVITATION_ISSUED,
                actor_id=inviter.user_id,
                to_status=InvitationStatus.PENDING,
                changes={
                    "email": hash_email(email),
                    "invitation_type": invitation_type.value,
                    "role": role.value,
                },
            )
    except ConflictError as exc:
        # The pending-invitation unique indexes caught a concurrent issue
        if store.first(_pending_statement(email, invitation_type, affiliate_id)) is not None:
            raise AlreadyExistsError(
                "A pending invitation already exists for this invitee",
                code="invitation_pending",
            ) from exc
        raise

    logger.info(
        "Invitation issued",
        extra=build_log_context(
            actor_id=str(inviter.user_id),
            client_id=str(client_id) if client_id else None,
            entity_type="invitation",
            entity_id=str(invitation.id),
            email=email,
            invitation_type=invitation_type.value,
        ),
    )
    notify_safely(deps.notifier, "invitation_issued", invitation, token)
    return invitation


# =============================================================================
# Validate
# =============================================================================


def validate(store: EntityStore, deps: CoreDeps, token: str) -> InvitationValidation:
    """Public check of a token. Read-only; expiry is evaluated against the clock."""
    invitation = _find_by_token(store, token)
    if invitation is None:
        logger.warning("Invalid invitation token", extra=build_log_context(token_hint=token_hint(token)))
        return InvitationValidation(valid=False, reason="not_found")

    status = effective_status(invitation, deps.clock.now())
    if status != InvitationStatus.PENDING:
        return InvitationValidation(valid=False, reason=status.value)

    return InvitationValidation(
        valid=True,
        email=invitation.email,
        invitation_type=invitation.invitation_type,
        name=_invitee_name(store, invitation),
        expires_at=invitation.expires_at,
    )


# =============================================================================
# Accept
# =============================================================================


def _resolve_user(
    store: EntityStore,
    invitation: Invitation,
    name: str | None,
) -> tuple[User, bool]:
    """Reuse an inactive principal with the invitation email, or create one."""
    user = _reusable_principal(
        store, invitation.email, invitation.invitation_type, invitation.affiliate_id
    )
    if user is not None:
        user.role = invitation.role
        user.is_active = True
        user.deactivated_at = None
        if name and not user.name:
            user.name = name
        return user, False

    user = User(
        email=invitation.email,
        name=name or _entity_display_name(invitation),
        role=invitation.role,
        is_active=True,
    )
    store.add(user)
    store.flush()
    return user, True


def _entity_display_name(invitation: Invitation) -> str | None:
    data = invitation.entity_data or {}
    display = f"{data.get('first_name', '')} {data.get('last_name', '')}".strip()
    return display or None


def _bind_entity(store: EntityStore, invitation: Invitation, user: User) -> UUID:
    """Create (or reactivate) the Employee/Agent row, or link the existing Affiliate."""
    data = invitation.entity_data or {}
    if invitation.invitation_type in (InvitationType.EMPLOYEE, InvitationType.AGENT):
        fields = {
            "first_name": data.get("first_name", ""),
            "last_name": data.get("last_name", ""),
            "email": invitation.email,
            "phone": data.get("phone"),
        }
        if invitation.invitation_type == InvitationType.EMPLOYEE:
            model = Employee
            fields.update(
                position=data.get("position"),
                department=data.get("department"),
                employee_code=data.get("employee_code"),
            )
        else:
            model = Agent
            fields["agent_code"] = data.get("agent_code")

        # A reactivated principal keeps its old row
        row = store.first(select(model).where(model.user_id == user.id))
        if row is None:
            row = store.add(model(user_id=user.id))
        for key, value in fields.items():
            setattr(row, key, value)
        row.is_active = True
        store.flush()
        return row.id

    if invitation.affiliate_id is None:
        raise ValidationError("Affiliate invitation has no affiliate", code="missing_affiliate")
    affiliate = store.require(Affiliate, invitation.affiliate_id, "Affiliate")
    if not store.compare_and_set(Affiliate, affiliate.id, "user_id", None, user.id):
        raise ConflictError("Affiliate is already linked to a user account")
    return affiliate.id


def accept(
    store: EntityStore,
    deps: CoreDeps,
    token: str,
    *,
    name: str | None = None,
) -> AcceptedInvitation:
    """
    Redeem a token: create/attach the principal, bind it, flip PENDING -> ACCEPTED.

    All three happen in one transaction guarded by a compare-and-set on the
    status, so concurrent calls with one token produce exactly one principal.

    Raises:
        NotFoundError: unknown token
        ConflictError: already accepted (or lost the race to another accept)
        ExpiredError: past expiry
        InvalidTransitionError: revoked
    """
    invitation = _find_by_token(store, token)
    if invitation is None:
        logger.warning(
            "Invalid invitation token on accept", extra=build_log_context(token_hint=token_hint(token))
        )
        raise NotFoundError("Invitation not found", code="invitation_not_found")

    status = effective_status(invitation, deps.clock.now())
    if status == InvitationStatus.ACCEPTED:
        raise ConflictError("Invitation was already accepted", code="already_accepted")
    if status == InvitationStatus.REVOKED:
        raise InvalidTransitionError(
            "Invitation was revoked",
            from_status=status.value,
            to_status=InvitationStatus.ACCEPTED.value,
        )
    if status == InvitationStatus.EXPIRED:
        if invitation.status == InvitationStatus.PENDING:
            _expire(store, deps, invitation)
        raise ExpiredError("Invitation has expired")

    now = deps.clock.now()
    with store.unit_of_work():
        won = store.compare_and_set(
            Invitation,
            invitation.id,
            "status",
            InvitationStatus.PENDING,
            InvitationStatus.ACCEPTED,
            accepted_at=now,
        )
        if not won:
            raise ConflictError("Invitation was accepted concurrently", code="already_accepted")

        user, created = _resolve_user(store, invitation, name)
        entity_id = _bind_entity(store, invitation, user)
        invitation.accepted_user_id = user.id
        _audit(
            store,
            deps,
            invitation,
            AuditAction.INVITATION_ACCEPTED,
            actor_id=user.id,
            from_status=InvitationStatus.PENDING,
            to_status=InvitationStatus.ACCEPTED,
            changes={"user_id": str(user.id), "entity_id": str(entity_id), "created_user": created},
        )

    logger.info(
        "Invitation accepted",
        extra=build_log_context(
            actor_id=str(user.id),
            entity_type="invitation",
            entity_id=str(invitation.id),
            invitation_type=invitation.invitation_type.value,
        ),
    )
    return AcceptedInvitation(
        invitation_id=invitation.id,
        user_id=user.id,
        role=invitation.role,
        invitation_type=invitation.invitation_type,
        entity_id=entity_id,
        created_user=created,
    )


# =============================================================================
# Resend / revoke
# =============================================================================


def _authorize_manage(store: EntityStore, actor: Principal, invitation: Invitation) -> None:
    """Managing an invitation needs the same rights as issuing it."""
    actor_role = _authorize_type(actor, invitation.invitation_type, invitation.role)
    if invitation.invitation_type == InvitationType.AFFILIATE and actor_role not in BROKER_EMPLOYEES:
        if not has_access(actor, invitation.client_id):
            raise AuthorizationError("You do not have access to this invitation")


def get_invitation(store: EntityStore, invitation_id: UUID) -> Invitation:
    return store.require(Invitation, invitation_id, "Invitation")


def resend(store: EntityStore, deps: CoreDeps, actor: Principal, invitation_id: UUID) -> Invitation:
    """
    Re-deliver a PENDING invitation with a fresh token and a full new window.

    The previous token stops working immediately.
    """
    invitation = get_invitation(store, invitation_id)
    _authorize_manage(store, actor, invitation)
    _require_pending(store, deps, invitation, "resend")

    now = deps.clock.now()
    previous_expiry = invitation.expires_at
    previous_token = invitation.token
    with store.unit_of_work():
        token = _mint_token(store, deps)
        new_expiry = now + deps.config.invitation_window
        # Keyed on the token read above so a concurrent resend makes this miss
        changed = store.compare_and_set(
            Invitation,
            invitation.id,
            "token",
            previous_token,
            token,
            guard={"status": InvitationStatus.PENDING},
            expires_at=new_expiry,
            resend_count=Invitation.resend_count + 1,
            last_resent_at=now,
        )
        if not changed:
            raise ConflictError("Invitation changed while resending")
        _audit(
            store,
            deps,
            invitation,
            AuditAction.INVITATION_RESENT,
            actor_id=actor.user_id,
            changes=audit_service.field_diff(
                {"expires_at": previous_expiry.isoformat(), "token_rotated": False},
                {"expires_at": new_expiry.isoformat(), "token_rotated": True},
            ),
        )
    store.refresh(invitation)

    logger.info(
        "Invitation resent",
        extra=build_log_context(
            actor_id=str(actor.user_id),
            entity_type="invitation",
            entity_id=str(invitation.id),
            resend_count=invitation.resend_count,
        ),
    )
    notify_safely(deps.notifier, "invitation_resent", invitation, token)
    return invitation


def revoke(store: EntityStore, deps: CoreDeps, actor: Principal, invitation_id: UUID) -> Invitation:
    """Irreversibly cancel a PENDING invitation."""
    invitation = get_invitation(store, invitation_id)
    _authorize_manage(store, actor, invitation)
    _require_pending(store, deps, invitation, "revoke")

    now = deps.clock.now()
    with store.unit_of_work():
        changed = store.compare_and_set(
            Invitation,
            invitation.id,
            "status",
            InvitationStatus.PENDING,
            InvitationStatus.REVOKED,
            revoked_at=now,
            revoked_by_id=actor.user_id,
        )
        if not changed:
            raise ConflictError("Invitation changed while revoking")
        _audit(
            store,
            deps,
            invitation,
            AuditAction.INVITATION_REVOKED,
            actor_id=actor.user_id,
            from_status=InvitationStatus.PENDING,
            to_status=InvitationStatus.REVOKED,
        )
    store.refresh(invitation)

    logger.info(
        "Invitation revoked",
        extra=build_log_context(
            actor_id=str(actor.user_id), entity_type="invitation", entity_id=str(invitation.id)
        ),
    )
    return invitation


# =============================================================================
# Bulk
# =============================================================================


def _invite_one(store: EntityStore, deps: CoreDeps, actor: Principal, affiliate_id: UUID, role: Role) -> BulkInviteItem:
    try:
        invitation = issue(
            store,
            deps,
            actor,
            None,
            InvitationType.AFFILIATE,
            role,
            AffiliateInvitePayload(affiliate_id=affiliate_id),
        )
    except (CoreError, StoreUnavailableError) as exc:
        code = exc.code if isinstance(exc, CoreError) else "store_unavailable"
        reason = exc.message if isinstance(exc, CoreError) else "Storage temporarily unavailable"
        logger.warning(
            "Failed to invite affiliate in bulk operation",
            extra=build_log_context(
                actor_id=str(actor.user_id),
                entity_type="affiliate",
                entity_id=str(affiliate_id),
                error_code=code,
            ),
        )
        return BulkInviteItem(affiliate_id=affiliate_id, success=False, reason=reason, error_code=code)
    return BulkInviteItem(affiliate_id=affiliate_id, success=True, invitation_id=invitation.id)


def bulk_invite(
    store: EntityStore,
    deps: CoreDeps,
    actor: Principal,
    affiliate_ids: list[UUID],
    role: Role,
    *,
    max_concurrency: int | None = None,
    session_factory: sessionmaker | None = None,
) -> BulkInviteResult:
    """
    Invite many affiliates, each independently.

    There is no shared transaction: every item commits or fails on its own
    and failures come back as result entries, in input order. With
    ``max_concurrency`` > 1 items run on a bounded thread pool, each with its
    own session from ``session_factory``.
    """
    role = Role(role)
    require_role(actor, ROLES_CAN_INVITE_AFFILIATES, "invite affiliates")
    _check_role_matches_type(InvitationType.AFFILIATE, role)

    workers = max_concurrency or deps.config.bulk_invite_max_concurrency
    if workers < 1:
        raise ValidationError("max_concurrency must be at least 1")
    ids = list(affiliate_ids)

    if workers == 1 or len(ids) <= 1:
        results = [_invite_one(store, deps, actor, affiliate_id, role) for affiliate_id in ids]
    else:
        if session_factory is None:
            raise ValidationError("Concurrent bulk invitations need a session factory")

        def run(affiliate_id: UUID) -> BulkInviteItem:
            with store_scope(session_factory) as item_store:
                return _invite_one(item_store, deps, actor, affiliate_id, role)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(run, ids))

    success_count = sum(1 for r in results if r.success)
    logger.info(
        "Bulk affiliate invitation completed",
        extra=build_log_context(
            actor_id=str(actor.user_id),
            total=len(ids),
            success_count=success_count,
            failed_count=len(ids) - success_count,
        ),
    )
    return BulkInviteResult(
        total=len(ids),
        success_count=success_count,
        failed_count=len(ids) - success_count,
        results=results,
    )


# =============================================================================
# Listing and sweep
# =============================================================================


def list_invitations(
    store: EntityStore,
    actor: Principal,
    status: InvitationStatus | None = None,
    limit: int = 100,
) -> list[Invitation]:
    """Invitations visible to ``actor`` (stored status), newest first."""
    require_role(actor, ROLES_CAN_INVITE_AFFILIATES, "view invitations")
    statement = select(Invitation)
    if actor.role_enum not in BROKER_EMPLOYEES:
        statement = statement.where(Invitation.invitation_type == InvitationType.AFFILIATE)
    statement = apply_scope(statement, actor, Invitation.client_id)
    if status is not None:
        statement = statement.where(Invitation.status == InvitationStatus(status))
    return store.scalars(statement.order_by(Invitation.created_at.desc()).limit(limit))


def expire_stale(store: EntityStore, deps: CoreDeps, limit: int = 500) -> int:
    """
    Rewrite PENDING invitations past expiry as EXPIRED.

    Optional operator sweep; correctness never depends on it running.
    """
    now = deps.clock.now()
    stale = store.scalars(
        select(Invitation)
        .where(Invitation.status == InvitationStatus.PENDING, Invitation.expires_at < now)
        .order_by(Invitation.expires_at.asc())
        .limit(limit)
    )
    return sum(1 for invitation in stale if _expire(store, deps, invitation))
