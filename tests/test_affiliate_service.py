"""Tests for the owner/dependent affiliate structure."""

import uuid

import pytest
from sqlalchemy import select, update

from brokerage.core.errors import AuthorizationError, NotFoundError, ValidationError
from brokerage.db.enums import AffiliateType, AuditAction
from brokerage.db.models import Affiliate
from brokerage.services import affiliate_service, audit_service

from conftest import add_affiliate


def _create(store, deps, world, actor="admin_employee", client=None, **kwargs):
    kwargs.setdefault("first_name", "Nora")
    kwargs.setdefault("last_name", "Quintero")
    return affiliate_service.create_affiliate(
        store, deps, world.principal(actor), client_id=(client or world.client_a).id, **kwargs
    )


def test_create_owner(store, deps, world):
    affiliate = _create(store, deps, world, email="Nora.Q@Acme.com")

    assert affiliate.affiliate_type == AffiliateType.OWNER
    assert affiliate.primary_affiliate_id is None
    assert affiliate.email == "nora.q@acme.com"
    trail = audit_service.list_entries(store, deps.config, "affiliate", affiliate.id).items
    assert [e.action for e in trail] == [AuditAction.CREATED.value]


def test_create_dependent(store, deps, world):
    affiliate = _create(store, deps, world, primary_affiliate_id=world.owner_a.id)
    assert affiliate.affiliate_type == AffiliateType.DEPENDENT
    assert affiliate_service.has_dependents(store, world.owner_a.id) is True


@pytest.mark.parametrize(
    "primary,code",
    [
        (lambda w: w.dependent_a, "primary_not_owner"),
        (lambda w: w.owner_b, "primary_client_mismatch"),
    ],
)
def test_dependent_needs_owner_of_same_client(store, deps, world, primary, code):
    with pytest.raises(ValidationError) as exc:
        _create(store, deps, world, primary_affiliate_id=primary(world).id)
    assert exc.value.code == code


def test_create_validation(store, deps, world):
    with pytest.raises(ValidationError) as exc:
        _create(store, deps, world, email="nope")
    assert exc.value.code == "invalid_email"
    with pytest.raises(ValidationError):
        _create(store, deps, world, first_name="  ")
    with pytest.raises(NotFoundError):
        affiliate_service.create_affiliate(
            store, deps, world.principal("admin_employee"), client_id=uuid.uuid4(), first_name="A", last_name="B"
        )


def test_client_admin_limited_to_grants(store, deps, world):
    assert _create(store, deps, world, actor="client_admin").client_id == world.client_a.id
    with pytest.raises(AuthorizationError):
        _create(store, deps, world, actor="client_admin", client=world.client_b)
    with pytest.raises(AuthorizationError):
        _create(store, deps, world, actor="affiliate")


def test_set_primary_and_back(db, store, deps, world):
    actor = world.principal("admin_employee")
    loner = add_affiliate(db, world.client_a, first_name="Iker")
    db.commit()

    affiliate_service.set_primary_affiliate(store, deps, actor, loner.id, world.owner_a.id)
    assert loner.affiliate_type == AffiliateType.DEPENDENT
    assert loner.primary_affiliate_id == world.owner_a.id

    affiliate_service.set_primary_affiliate(store, deps, actor, loner.id, None)
    assert loner.affiliate_type == AffiliateType.OWNER
    assert loner.primary_affiliate_id is None

    trail = audit_service.list_entries(store, deps.config, "affiliate", loner.id).items
    assert [e.action for e in trail] == [AuditAction.FIELD_CHANGED.value] * 2
    assert trail[0].changes["affiliate_type"] == {"old": "owner", "new": "dependent"}


def test_owner_with_dependents_stays_owner(db, store, deps, world):
    other = add_affiliate(db, world.client_a, first_name="Olga")
    db.commit()
    with pytest.raises(ValidationError) as exc:
        affiliate_service.set_primary_affiliate(
            store, deps, world.principal("admin_employee"), world.owner_a.id, other.id
        )
    assert exc.value.code == "has_dependents"


def test_cannot_be_own_primary(store, deps, world):
    with pytest.raises(ValidationError) as exc:
        affiliate_service.set_primary_affiliate(
            store, deps, world.principal("admin_employee"), world.owner_b.id, world.owner_b.id
        )
    assert exc.value.code == "self_primary"


def test_set_primary_noop_writes_nothing(store, deps, world):
    affiliate_service.set_primary_affiliate(
        store, deps, world.principal("admin_employee"), world.dependent_a.id, world.owner_a.id
    )
    assert audit_service.list_entries(store, deps.config, "affiliate", world.dependent_a.id).items == []


def _demote_behind_session(db, affiliate, owner):
    """Make ``affiliate`` a dependent of ``owner`` without refreshing the session's copy."""
    db.execute(
        update(Affiliate)
        .where(Affiliate.id == affiliate.id)
        .values(affiliate_type=AffiliateType.DEPENDENT, primary_affiliate_id=owner.id)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def test_create_dependent_rechecks_owner_under_lock(db, store, deps, world):
    stale_owner = add_affiliate(db, world.client_a, first_name="Iker")
    db.commit()
    _demote_behind_session(db, stale_owner, world.owner_a)
    assert stale_owner.affiliate_type == AffiliateType.OWNER

    with pytest.raises(ValidationError) as exc:
        _create(store, deps, world, primary_affiliate_id=stale_owner.id)

    assert exc.value.code == "primary_not_owner"
    assert db.scalars(select(Affiliate).where(Affiliate.primary_affiliate_id == stale_owner.id)).all() == []


def test_set_primary_rechecks_owner_under_lock(db, store, deps, world):
    loner = add_affiliate(db, world.client_a, first_name="Olga")
    stale_owner = add_affiliate(db, world.client_a, first_name="Iker")
    db.commit()
    _demote_behind_session(db, stale_owner, world.owner_a)

    with pytest.raises(ValidationError) as exc:
        affiliate_service.set_primary_affiliate(
            store, deps, world.principal("admin_employee"), loner.id, stale_owner.id
        )

    assert exc.value.code == "primary_not_owner"
    db.refresh(loner)
    assert loner.affiliate_type == AffiliateType.OWNER
    assert loner.primary_affiliate_id is None
    assert audit_service.list_entries(store, deps.config, "affiliate", loner.id).items == []
