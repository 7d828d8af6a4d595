"""Tests for claim creation, workflow and invoice edits."""

from decimal import Decimal

import pytest
from sqlalchemy import update

from brokerage.core.deps import CoreDeps
from brokerage.core.errors import (
    AlreadyExistsError,
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    ValidationError,
)
from brokerage.db.enums import AuditAction, ClaimStatus
from brokerage.db.models import Claim
from brokerage.services import audit_service, claim_service

from conftest import NOW, make_config


def _claim(store, deps, world, actor="claims_employee", patient=None, policy=None, **kwargs):
    return claim_service.create_claim(
        store,
        deps,
        world.principal(actor),
        client_id=world.client_a.id,
        policy_id=(policy or world.policy_a).id,
        affiliate_id=world.owner_a.id,
        patient_id=(patient or world.owner_a).id,
        **kwargs,
    )


def _trail(store, deps, claim):
    return audit_service.list_entries(store, deps.config, "claim", claim.id).items


# =============================================================================
# Create
# =============================================================================


def test_create_claim_is_submitted_and_audited(store, deps, world):
    claim = _claim(store, deps, world, amount_submitted=Decimal("120.5"), description="Dental")

    assert claim.status == ClaimStatus.SUBMITTED
    assert claim.version == 1
    trail = _trail(store, deps, claim)
    assert [entry.action for entry in trail] == [AuditAction.CREATED.value]
    assert trail[0].to_status == "submitted"
    assert trail[0].changes["amount_submitted"] == "120.50"


def test_affiliate_files_claim_for_dependent(store, deps, world):
    claim = _claim(store, deps, world, actor="affiliate", patient=world.dependent_a)
    assert claim.patient_id == world.dependent_a.id


def test_dependent_cannot_file_for_owner(store, deps, world):
    with pytest.raises(AuthorizationError):
        _claim(store, deps, world, actor="dependent", patient=world.owner_a)


def test_client_admin_cannot_file_for_other_client(store, deps, world):
    with pytest.raises(AuthorizationError):
        claim_service.create_claim(
            store,
            deps,
            world.principal("client_admin"),
            client_id=world.client_b.id,
            policy_id=world.policy_b.id,
            affiliate_id=world.owner_b.id,
            patient_id=world.owner_b.id,
        )


@pytest.mark.parametrize(
    "parties,code",
    [
        (lambda w: (w.policy_b, w.owner_a, w.owner_a), "policy_client_mismatch"),
        (lambda w: (w.policy_a, w.owner_b, w.owner_a), "affiliate_client_mismatch"),
        (lambda w: (w.policy_a, w.dependent_a, w.dependent_a), "billing_not_owner"),
        (lambda w: (w.policy_a, w.owner_a, w.owner_b), "patient_not_covered"),
        (lambda w: (w.policy_a2, w.owner_a, w.dependent_a), "patient_not_on_policy"),
    ],
)
def test_create_claim_checks_parties(store, deps, world, parties, code):
    policy, owner, patient = parties(world)
    with pytest.raises(ValidationError) as exc:
        claim_service.create_claim(
            store,
            deps,
            world.principal("claims_employee"),
            client_id=world.client_a.id,
            policy_id=policy.id,
            affiliate_id=owner.id,
            patient_id=patient.id,
        )
    assert exc.value.code == code


def test_create_claim_rejects_negative_amount(store, deps, world):
    with pytest.raises(ValidationError):
        _claim(store, deps, world, amount_submitted=Decimal("-1"))


# =============================================================================
# Workflow
# =============================================================================


def test_review_then_backwards_is_rejected(store, deps, world):
    actor = world.principal("claims_employee")
    claim = _claim(store, deps, world)

    claim_service.transition_claim(store, deps, actor, claim.id, ClaimStatus.UNDER_REVIEW)

    status_changes = [
        entry for entry in _trail(store, deps, claim) if entry.action == AuditAction.STATUS_CHANGED.value
    ]
    assert [(e.from_status, e.to_status) for e in status_changes] == [("submitted", "under_review")]
    with pytest.raises(InvalidTransitionError):
        claim_service.transition_claim(store, deps, actor, claim.id, ClaimStatus.SUBMITTED)


def test_decision_stamps_and_bumps_version(store, deps, world, clock):
    actor = world.principal("claims_employee")
    claim = _claim(store, deps, world)
    claim_service.transition_claim(store, deps, actor, claim.id, ClaimStatus.UNDER_REVIEW)
    assert claim.decided_at is None

    claim_service.transition_claim(store, deps, actor, claim.id, ClaimStatus.APPROVED)

    assert claim.status == ClaimStatus.APPROVED
    assert claim.version == 3
    assert claim.decided_at == NOW


def test_terminal_claim_cannot_move(store, deps, world):
    actor = world.principal("claims_employee")
    claim = _claim(store, deps, world)
    claim_service.transition_claim(store, deps, actor, claim.id, ClaimStatus.UNDER_REVIEW)
    claim_service.transition_claim(store, deps, actor, claim.id, ClaimStatus.REJECTED)

    with pytest.raises(InvalidTransitionError):
        claim_service.transition_claim(store, deps, actor, claim.id, ClaimStatus.APPROVED)


def test_direct_decision_needs_switch(store, deps, world, clock, tokens, notifier):
    actor = world.principal("claims_employee")
    claim = _claim(store, deps, world)
    with pytest.raises(InvalidTransitionError):
        claim_service.transition_claim(store, deps, actor, claim.id, ClaimStatus.APPROVED)

    direct = CoreDeps(
        config=make_config(CLAIM_ALLOW_DIRECT_DECISION=True), clock=clock, tokens=tokens, notifier=notifier
    )
    claim_service.transition_claim(store, direct, actor, claim.id, ClaimStatus.APPROVED)
    assert claim.status == ClaimStatus.APPROVED


@pytest.mark.parametrize("role", ["affiliate", "agent", "operations_employee", "client_admin"])
def test_only_claim_desk_moves_claims(store, deps, world, role):
    claim = _claim(store, deps, world)
    with pytest.raises(AuthorizationError):
        claim_service.transition_claim(store, deps, world.principal(role), claim.id, ClaimStatus.UNDER_REVIEW)
    assert claim.status == ClaimStatus.SUBMITTED


def test_transition_lost_race(db, store, deps, world):
    claim = _claim(store, deps, world)
    db.execute(
        update(Claim)
        .where(Claim.id == claim.id)
        .values(status=ClaimStatus.UNDER_REVIEW)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    with pytest.raises(ConflictError):
        claim_service.transition_claim(
            store, deps, world.principal("claims_employee"), claim.id, ClaimStatus.UNDER_REVIEW
        )


def test_claim_trail_verifies(store, deps, world):
    actor = world.principal("claims_employee")
    claim = _claim(store, deps, world)
    claim_service.transition_claim(store, deps, actor, claim.id, ClaimStatus.UNDER_REVIEW)
    claim_service.transition_claim(store, deps, actor, claim.id, ClaimStatus.APPROVED)

    result = audit_service.verify_chain(store, "claim", claim.id)
    assert result.valid is True
    assert result.checked == 3


# =============================================================================
# Reads
# =============================================================================


def test_list_claims_is_scoped(store, deps, world):
    own = _claim(store, deps, world)
    dependents = _claim(store, deps, world, patient=world.dependent_a)
    foreign = claim_service.create_claim(
        store,
        deps,
        world.principal("claims_employee"),
        client_id=world.client_b.id,
        policy_id=world.policy_b.id,
        affiliate_id=world.owner_b.id,
        patient_id=world.owner_b.id,
    )

    def visible(name):
        return {c.id for c in claim_service.list_claims(store, world.principal(name))}

    assert visible("claims_employee") == {own.id, dependents.id, foreign.id}
    assert visible("client_admin") == {own.id, dependents.id}
    assert visible("affiliate") == {own.id, dependents.id}
    assert visible("dependent") == {dependents.id}


def test_dependent_cannot_read_owner_claim(store, deps, world):
    claim = _claim(store, deps, world)
    with pytest.raises(AuthorizationError):
        claim_service.get_claim(store, world.principal("dependent"), claim.id)


# =============================================================================
# Policy reassignment
# =============================================================================


def test_reassign_policy(store, deps, world):
    actor = world.principal("claims_employee")
    claim = _claim(store, deps, world)

    claim_service.reassign_policy(store, deps, actor, claim.id, world.policy_a2.id)

    assert claim.policy_id == world.policy_a2.id
    assert claim.version == 2
    last = _trail(store, deps, claim)[-1]
    assert last.action == AuditAction.FIELD_CHANGED.value
    assert last.changes == {
        "policy_id": {"old": str(world.policy_a.id), "new": str(world.policy_a2.id)}
    }


def test_reassign_policy_keeps_invariants(store, deps, world):
    actor = world.principal("claims_employee")
    claim = _claim(store, deps, world, patient=world.dependent_a)

    with pytest.raises(ValidationError) as exc:
        claim_service.reassign_policy(store, deps, actor, claim.id, world.policy_a2.id)
    assert exc.value.code == "patient_not_on_policy"
    with pytest.raises(ValidationError) as exc:
        claim_service.reassign_policy(store, deps, actor, claim.id, world.policy_b.id)
    assert exc.value.code == "policy_client_mismatch"
    assert claim.version == 1


# =============================================================================
# Invoices
# =============================================================================


def test_add_and_remove_invoice_are_audited(store, deps, world):
    actor = world.principal("claims_employee")
    claim = _claim(store, deps, world)

    invoice = claim_service.add_invoice(
        store, deps, actor, claim.id, invoice_number="INV-1", amount=Decimal("80"), provider_name="City Clinic"
    )
    assert claim.version == 2
    added = _trail(store, deps, claim)[-1]
    assert added.action == AuditAction.CLAIM_INVOICE_ADDED.value
    assert added.changes == {
        "invoice:INV-1": {"old": None, "new": {"amount": "80.00", "provider_name": "City Clinic"}}
    }

    claim_service.remove_invoice(store, deps, actor, claim.id, invoice.id)
    assert claim.version == 3
    assert claim.invoices == []
    removed = _trail(store, deps, claim)[-1]
    assert removed.action == AuditAction.CLAIM_INVOICE_REMOVED.value
    assert removed.changes["invoice:INV-1"]["new"] is None


def test_add_invoice_validation(store, deps, world):
    actor = world.principal("claims_employee")
    claim = _claim(store, deps, world)
    claim_service.add_invoice(store, deps, actor, claim.id, invoice_number="INV-1", amount=Decimal("10"))

    with pytest.raises(AlreadyExistsError):
        claim_service.add_invoice(store, deps, actor, claim.id, invoice_number="INV-1", amount=Decimal("5"))
    with pytest.raises(ValidationError):
        claim_service.add_invoice(store, deps, actor, claim.id, invoice_number="INV-2", amount=Decimal("0"))
    with pytest.raises(ValidationError):
        claim_service.add_invoice(store, deps, actor, claim.id, invoice_number="  ", amount=Decimal("5"))


def test_invoices_frozen_on_decided_claim(store, deps, world):
    actor = world.principal("claims_employee")
    claim = _claim(store, deps, world)
    claim_service.transition_claim(store, deps, actor, claim.id, ClaimStatus.UNDER_REVIEW)
    claim_service.transition_claim(store, deps, actor, claim.id, ClaimStatus.APPROVED)

    with pytest.raises(InvalidTransitionError):
        claim_service.add_invoice(store, deps, actor, claim.id, invoice_number="INV-9", amount=Decimal("5"))


def test_affiliate_cannot_edit_invoices(store, deps, world):
    claim = _claim(store, deps, world)
    with pytest.raises(AuthorizationError):
        claim_service.add_invoice(
            store, deps, world.principal("affiliate"), claim.id, invoice_number="INV-1", amount=Decimal("5")
        )
