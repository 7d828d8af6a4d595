"""Affiliate service - owner/dependent structure.

Structure rules (depth 1):
- OWNER rows have no primary affiliate
- DEPENDENT rows point at an OWNER of the same client
- a row that has dependents can never become a DEPENDENT itself
"""

from __future__ import annotations

import logging
from uuid import UUID

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select

from brokerage.core.deps import CoreDeps
from brokerage.core.errors import ValidationError
from brokerage.core.structured_logging import build_log_context
from brokerage.db.enums import (
    BROKER_EMPLOYEES,
    ROLES_CAN_INVITE_AFFILIATES,
    AffiliateType,
    AuditAction,
    AuditEntityType,
)
from brokerage.db.models import Affiliate, Client
from brokerage.services import audit_service
from brokerage.services.scope_service import Principal, require_access, require_role
from brokerage.services.store import EntityStore, exists

logger = logging.getLogger(__name__)

ENTITY_TYPE = AuditEntityType.AFFILIATE.value

_email_adapter = TypeAdapter(EmailStr)


def _authorize(actor: Principal, client_id: UUID, action: str) -> None:
    """Broker staff manage any client's affiliates; CLIENT_ADMIN only within scope."""
    role = require_role(actor, ROLES_CAN_INVITE_AFFILIATES, action)
    if role not in BROKER_EMPLOYEES:
        require_access(actor, client_id)


def _normalize_email(email: str | None) -> str | None:
    if email is None or not email.strip():
        return None
    try:
        return _email_adapter.validate_python(email.strip()).lower()
    except PydanticValidationError as exc:
        raise ValidationError("Invalid email address", code="invalid_email") from exc


def _check_primary(store: EntityStore, client_id: UUID, primary_affiliate_id: UUID, affiliate_id: UUID | None = None) -> Affiliate:
    """The prospective primary must be an OWNER of the same client."""
    if affiliate_id is not None and primary_affiliate_id == affiliate_id:
        raise ValidationError("An affiliate cannot be its own primary", code="self_primary")
    primary = store.require(Affiliate, primary_affiliate_id, "Primary affiliate")
    if primary.client_id != client_id:
        raise ValidationError("Primary affiliate belongs to another client", code="primary_client_mismatch")
    if primary.affiliate_type != AffiliateType.OWNER:
        raise ValidationError("Primary affiliate must be an owner", code="primary_not_owner")
    return primary


def _check_becomes_dependent(store: EntityStore, affiliate: Affiliate, primary_affiliate_id: UUID) -> None:
    _check_primary(store, affiliate.client_id, primary_affiliate_id, affiliate.id)
    if has_dependents(store, affiliate.id):
        raise ValidationError(
            "An affiliate with dependents cannot become a dependent",
            code="has_dependents",
        )


def _lock(store: EntityStore, *affiliate_ids: UUID | None) -> None:
    """Row-lock affiliates in id order and reload them from the locked rows."""
    for affiliate_id in sorted({a for a in affiliate_ids if a is not None}, key=str):
        store.get_for_update(Affiliate, affiliate_id)


def _structure_diff(affiliate: Affiliate, new_type: AffiliateType, primary_affiliate_id: UUID | None) -> dict:
    before = {
        "affiliate_type": affiliate.affiliate_type.value,
        "primary_affiliate_id": str(affiliate.primary_affiliate_id) if affiliate.primary_affiliate_id else None,
    }
    after = {
        "affiliate_type": new_type.value,
        "primary_affiliate_id": str(primary_affiliate_id) if primary_affiliate_id else None,
    }
    return audit_service.field_diff(before, after)


def has_dependents(store: EntityStore, affiliate_id: UUID) -> bool:
    return exists(store, select(Affiliate).where(Affiliate.primary_affiliate_id == affiliate_id))


def create_affiliate(
    store: EntityStore,
    deps: CoreDeps,
    actor: Principal,
    *,
    client_id: UUID,
    first_name: str,
    last_name: str,
    email: str | None = None,
    primary_affiliate_id: UUID | None = None,
) -> Affiliate:
    """
    Create an affiliate under a client.

    Without ``primary_affiliate_id`` the row is an OWNER; with it, a
    DEPENDENT of that owner.
    """
    _authorize(actor, client_id, "create affiliates")
    store.require(Client, client_id, "Client")
    first_name = (first_name or "").strip()
    last_name = (last_name or "").strip()
    if not first_name or not last_name:
        raise ValidationError("first_name and last_name are required")
    email = _normalize_email(email)
    if primary_affiliate_id is not None:
        _check_primary(store, client_id, primary_affiliate_id)

    affiliate_type = AffiliateType.OWNER if primary_affiliate_id is None else AffiliateType.DEPENDENT
    with store.unit_of_work():
        if primary_affiliate_id is not None:
            # The owner may have become a dependent since the check above
            _lock(store, primary_affiliate_id)
            _check_primary(store, client_id, primary_affiliate_id)
        affiliate = Affiliate(
            client_id=client_id,
            first_name=first_name,
            last_name=last_name,
            email=email,
            affiliate_type=affiliate_type,
            primary_affiliate_id=primary_affiliate_id,
            is_active=True,
            created_at=deps.clock.now(),
        )
        store.add(affiliate)
        store.flush()
        audit_service.record(
            store,
            deps.clock,
            entity_type=ENTITY_TYPE,
            entity_id=affiliate.id,
            action=AuditAction.CREATED,
            actor_id=actor.user_id,
            client_id=client_id,
            changes={
                "affiliate_type": affiliate_type.value,
                "primary_affiliate_id": str(primary_affiliate_id) if primary_affiliate_id else None,
            },
        )

    logger.info(
        "Affiliate created",
        extra=build_log_context(
            actor_id=str(actor.user_id),
            client_id=str(client_id),
            entity_type=ENTITY_TYPE,
            entity_id=str(affiliate.id),
            affiliate_type=affiliate_type.value,
        ),
    )
    return affiliate


def set_primary_affiliate(
    store: EntityStore,
    deps: CoreDeps,
    actor: Principal,
    affiliate_id: UUID,
    primary_affiliate_id: UUID | None,
) -> Affiliate:
    """Make an affiliate a DEPENDENT of ``primary_affiliate_id``, or an OWNER when None."""
    affiliate = store.require(Affiliate, affiliate_id, "Affiliate")
    _authorize(actor, affiliate.client_id, "edit affiliates")

    if primary_affiliate_id is not None:
        _check_becomes_dependent(store, affiliate, primary_affiliate_id)
        new_type = AffiliateType.DEPENDENT
    else:
        new_type = AffiliateType.OWNER
    if not _structure_diff(affiliate, new_type, primary_affiliate_id):
        return affiliate

    with store.unit_of_work():
        # Both rows are re-read under lock; a concurrent edit of either family
        # may have changed them since the checks above
        _lock(store, affiliate.id, primary_affiliate_id)
        if primary_affiliate_id is not None:
            _check_becomes_dependent(store, affiliate, primary_affiliate_id)
        diff = _structure_diff(affiliate, new_type, primary_affiliate_id)
        if not diff:
            return affiliate
        affiliate.affiliate_type = new_type
        affiliate.primary_affiliate_id = primary_affiliate_id
        store.flush()
        audit_service.record(
            store,
            deps.clock,
            entity_type=ENTITY_TYPE,
            entity_id=affiliate.id,
            action=AuditAction.FIELD_CHANGED,
            actor_id=actor.user_id,
            client_id=affiliate.client_id,
            changes=diff,
        )

    logger.info(
        "Affiliate primary changed",
        extra=build_log_context(
            actor_id=str(actor.user_id),
            client_id=str(affiliate.client_id),
            entity_type=ENTITY_TYPE,
            entity_id=str(affiliate.id),
        ),
    )
    return affiliate
