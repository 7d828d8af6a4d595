"""Claim service - creation invariants, status workflow and invoice edits.

Claim invariants:
- policy belongs to the claim's client
- billing affiliate is an OWNER of that client
- patient is the owner or one of its dependents, and is on the policy
"""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from brokerage.core.deps import CoreDeps
from brokerage.core.errors import (
    AlreadyExistsError,
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    ValidationError,
)
from brokerage.core.structured_logging import build_log_context
from brokerage.db.enums import AffiliateType, AuditAction, AuditEntityType, ClaimStatus
from brokerage.db.models import Affiliate, Claim, ClaimInvoice, Policy, PolicyAffiliate
from brokerage.services import audit_service, workflow_engine
from brokerage.services.scope_service import Principal, apply_scope, require_row_access
from brokerage.services.store import EntityStore, exists

logger = logging.getLogger(__name__)

ENTITY_TYPE = AuditEntityType.CLAIM.value


# =============================================================================
# Helpers
# =============================================================================


def _money(value) -> str | None:
    return None if value is None else str(Decimal(value).quantize(Decimal("0.01")))


def _check_parties(
    store: EntityStore,
    client_id: UUID,
    policy_id: UUID,
    affiliate_id: UUID,
    patient_id: UUID,
) -> tuple[Policy, Affiliate, Affiliate]:
    """Load and validate policy, billing owner and patient for one claim."""
    policy = store.require(Policy, policy_id, "Policy")
    if policy.client_id != client_id:
        raise ValidationError("Policy does not belong to this client", code="policy_client_mismatch")

    owner = store.require(Affiliate, affiliate_id, "Affiliate")
    if owner.client_id != client_id:
        raise ValidationError("Affiliate does not belong to this client", code="affiliate_client_mismatch")
    if owner.affiliate_type != AffiliateType.OWNER:
        raise ValidationError("Billing affiliate must be an owner", code="billing_not_owner")

    patient = store.require(Affiliate, patient_id, "Patient")
    if patient.id != owner.id and patient.primary_affiliate_id != owner.id:
        raise ValidationError(
            "Patient must be the owner or one of the owner's dependents",
            code="patient_not_covered",
        )
    _check_patient_on_policy(store, policy.id, patient.id)
    return policy, owner, patient


def _check_patient_on_policy(store: EntityStore, policy_id: UUID, patient_id: UUID) -> None:
    on_policy = exists(
        store,
        select(PolicyAffiliate).where(
            PolicyAffiliate.policy_id == policy_id,
            PolicyAffiliate.affiliate_id == patient_id,
        ),
    )
    if not on_policy:
        raise ValidationError("Patient is not covered by this policy", code="patient_not_on_policy")


def _require_editor(deps: CoreDeps, actor: Principal, claim: Claim, action: str) -> None:
    """The actor's role must be allowed to act on the claim's current status."""
    editors = deps.config.claim_status_actors.get(ClaimStatus(claim.status), frozenset())
    if actor.role_enum not in editors:
        logger.warning(
            "Claim action denied for role",
            extra=build_log_context(
                actor_id=str(actor.user_id),
                client_id=str(claim.client_id),
                entity_type=ENTITY_TYPE,
                entity_id=str(claim.id),
                action=action,
            ),
        )
        raise AuthorizationError(f"Your role cannot {action} a {claim.status.value} claim")


def _require_open(deps: CoreDeps, claim: Claim, action: str) -> None:
    if deps.config.claim_graph.is_terminal(claim.status):
        raise InvalidTransitionError(
            f"Cannot {action} a {claim.status.value} claim",
            from_status=claim.status.value,
        )


def _bump_version(store: EntityStore, deps: CoreDeps, claim: Claim, **values) -> None:
    """Optimistic write on ``version``; ConflictError if someone else wrote first."""
    won = store.compare_and_set(
        Claim,
        claim.id,
        "version",
        claim.version,
        claim.version + 1,
        updated_at=deps.clock.now(),
        **values,
    )
    if not won:
        raise ConflictError("Claim was modified concurrently", code="version_conflict")


# =============================================================================
# Reads
# =============================================================================


def get_claim(store: EntityStore, actor: Principal, claim_id: UUID) -> Claim:
    claim = store.require(Claim, claim_id, "Claim")
    require_row_access(actor, claim.client_id, claim.patient_id)
    return claim


def list_claims(
    store: EntityStore,
    actor: Principal,
    status: ClaimStatus | None = None,
    limit: int = 100,
) -> list[Claim]:
    """Claims in the actor's scope; self-scoped principals see their own patients' claims."""
    statement = apply_scope(select(Claim), actor, Claim.client_id, Claim.patient_id)
    if status is not None:
        statement = statement.where(Claim.status == ClaimStatus(status))
    return store.scalars(statement.order_by(Claim.created_at.desc()).limit(limit))


# =============================================================================
# Create
# =============================================================================


def create_claim(
    store: EntityStore,
    deps: CoreDeps,
    actor: Principal,
    *,
    client_id: UUID,
    policy_id: UUID,
    affiliate_id: UUID,
    patient_id: UUID,
    description: str | None = None,
    amount_submitted: Decimal | None = None,
) -> Claim:
    """Create a SUBMITTED claim after checking scope and party invariants."""
    require_row_access(actor, client_id, patient_id)
    if amount_submitted is not None and Decimal(amount_submitted) < 0:
        raise ValidationError("amount_submitted cannot be negative")
    _check_parties(store, client_id, policy_id, affiliate_id, patient_id)

    with store.unit_of_work():
        claim = Claim(
            client_id=client_id,
            policy_id=policy_id,
            affiliate_id=affiliate_id,
            patient_id=patient_id,
            status=ClaimStatus.SUBMITTED,
            version=1,
            description=description,
            amount_submitted=amount_submitted,
            created_by_id=actor.user_id,
            created_at=deps.clock.now(),
        )
        store.add(claim)
        store.flush()
        audit_service.record(
            store,
            deps.clock,
            entity_type=ENTITY_TYPE,
            entity_id=claim.id,
            action=AuditAction.CREATED,
            actor_id=actor.user_id,
            client_id=client_id,
            to_status=ClaimStatus.SUBMITTED,
            changes={
                "policy_id": str(policy_id),
                "affiliate_id": str(affiliate_id),
                "patient_id": str(patient_id),
                "amount_submitted": _money(amount_submitted),
            },
        )

    logger.info(
        "Claim created",
        extra=build_log_context(
            actor_id=str(actor.user_id),
            client_id=str(client_id),
            entity_type=ENTITY_TYPE,
            entity_id=str(claim.id),
        ),
    )
    return claim


# =============================================================================
# Workflow
# =============================================================================


def transition_claim(
    store: EntityStore,
    deps: CoreDeps,
    actor: Principal,
    claim_id: UUID,
    to_status: ClaimStatus | str,
) -> Claim:
    """
    Move a claim along the claim graph.

    Order of checks: scope, then the edge itself, then whether the actor's
    role may act on the current status.
    """
    claim = get_claim(store, actor, claim_id)
    _, target = workflow_engine.check_transition(deps, ENTITY_TYPE, claim.status, to_status)
    _require_editor(deps, actor, claim, "update")

    values = {}
    if deps.config.claim_graph.is_terminal(target):
        values["decided_at"] = deps.clock.now()
    return workflow_engine.transition(
        store, deps, actor, claim, target, entity_type=ENTITY_TYPE, values=values
    )


def reassign_policy(
    store: EntityStore,
    deps: CoreDeps,
    actor: Principal,
    claim_id: UUID,
    policy_id: UUID,
) -> Claim:
    """Point an open claim at another policy; the patient must be on it."""
    claim = get_claim(store, actor, claim_id)
    _require_open(deps, claim, "reassign")
    _require_editor(deps, actor, claim, "reassign")
    if policy_id == claim.policy_id:
        return claim
    _check_parties(store, claim.client_id, policy_id, claim.affiliate_id, claim.patient_id)

    old_policy_id = claim.policy_id
    with store.unit_of_work():
        _bump_version(store, deps, claim, policy_id=policy_id)
        audit_service.record(
            store,
            deps.clock,
            entity_type=ENTITY_TYPE,
            entity_id=claim.id,
            action=AuditAction.FIELD_CHANGED,
            actor_id=actor.user_id,
            client_id=claim.client_id,
            changes=audit_service.field_diff(
                {"policy_id": str(old_policy_id)}, {"policy_id": str(policy_id)}
            ),
        )
    store.refresh(claim)

    logger.info(
        "Claim policy reassigned",
        extra=build_log_context(
            actor_id=str(actor.user_id),
            client_id=str(claim.client_id),
            entity_type=ENTITY_TYPE,
            entity_id=str(claim.id),
        ),
    )
    return claim


# =============================================================================
# Invoices
# =============================================================================


def add_invoice(
    store: EntityStore,
    deps: CoreDeps,
    actor: Principal,
    claim_id: UUID,
    *,
    invoice_number: str,
    amount: Decimal,
    provider_name: str | None = None,
) -> ClaimInvoice:
    """Attach an invoice line to an open claim (audited as a field diff)."""
    claim = get_claim(store, actor, claim_id)
    _require_open(deps, claim, "add invoices to")
    _require_editor(deps, actor, claim, "edit invoices on")

    invoice_number = (invoice_number or "").strip()
    if not invoice_number:
        raise ValidationError("invoice_number is required")
    if Decimal(amount) <= 0:
        raise ValidationError("Invoice amount must be positive")
    duplicate = exists(
        store,
        select(ClaimInvoice).where(
            ClaimInvoice.claim_id == claim.id, ClaimInvoice.invoice_number == invoice_number
        ),
    )
    if duplicate:
        raise AlreadyExistsError(f"Invoice {invoice_number} is already on this claim")

    with store.unit_of_work():
        invoice = ClaimInvoice(
            claim_id=claim.id,
            invoice_number=invoice_number,
            provider_name=provider_name,
            amount=Decimal(amount),
            created_at=deps.clock.now(),
        )
        store.add(invoice)
        store.flush()
        _bump_version(store, deps, claim)
        audit_service.record(
            store,
            deps.clock,
            entity_type=ENTITY_TYPE,
            entity_id=claim.id,
            action=AuditAction.CLAIM_INVOICE_ADDED,
            actor_id=actor.user_id,
            client_id=claim.client_id,
            changes={
                f"invoice:{invoice_number}": {
                    "old": None,
                    "new": {"amount": _money(amount), "provider_name": provider_name},
                }
            },
        )
    store.refresh(claim)
    return invoice


def remove_invoice(
    store: EntityStore,
    deps: CoreDeps,
    actor: Principal,
    claim_id: UUID,
    invoice_id: UUID,
) -> None:
    """Detach an invoice line from an open claim (audited as a field diff)."""
    claim = get_claim(store, actor, claim_id)
    _require_open(deps, claim, "remove invoices from")
    _require_editor(deps, actor, claim, "edit invoices on")
    invoice = store.require(ClaimInvoice, invoice_id, "Invoice")
    if invoice.claim_id != claim.id:
        raise ValidationError("Invoice does not belong to this claim")

    before = {"amount": _money(invoice.amount), "provider_name": invoice.provider_name}
    with store.unit_of_work():
        store.delete(invoice)
        store.flush()
        _bump_version(store, deps, claim)
        audit_service.record(
            store,
            deps.clock,
            entity_type=ENTITY_TYPE,
            entity_id=claim.id,
            action=AuditAction.CLAIM_INVOICE_REMOVED,
            actor_id=actor.user_id,
            client_id=claim.client_id,
            changes={f"invoice:{invoice.invoice_number}": {"old": before, "new": None}},
        )
    store.refresh(claim)
