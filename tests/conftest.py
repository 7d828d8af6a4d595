"""
Test configuration and fixtures.

Provides:
- Fresh in-memory SQLite database per test (StaticPool, foreign keys on)
- EntityStore over a session bound to it
- FixedClock, counting token generator and recording notifier
- Seeded clients, principals, affiliates and policies
"""
import itertools
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Generator

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from brokerage.core.clock import FixedClock
from brokerage.core.config import CoreConfig, Settings
from brokerage.core.deps import CoreDeps
from brokerage.db.base import Base
from brokerage.db.enums import AffiliateType, Role
from brokerage.db.models import Affiliate, Client, ClientGrant, Policy, PolicyAffiliate, User
from brokerage.db.session import build_session_factory
from brokerage.services.scope_service import Principal, principal_from_user
from brokerage.services.store import EntityStore

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _enable_sqlite_fks(engine) -> None:
    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def make_config(**overrides) -> CoreConfig:
    """CoreConfig from defaults, ignoring any .env file on the machine."""
    return CoreConfig.from_settings(Settings(_env_file=None, **overrides))


# =============================================================================
# Collaborators
# =============================================================================


class CountingTokens:
    """Deterministic, unique tokens (long enough to look real)."""

    def __init__(self, prefix: str = "tok"):
        self._counter = itertools.count(1)
        self.prefix = prefix
        self.issued: list[str] = []

    def __call__(self) -> str:
        token = f"{self.prefix}-{next(self._counter):06d}-" + "x" * 36
        self.issued.append(token)
        return token


@dataclass
class RecordingNotifier:
    events: list = field(default_factory=list)
    fail: bool = False

    def invitation_issued(self, invitation, token: str) -> None:
        if self.fail:
            raise RuntimeError("mail relay down")
        self.events.append(("issued", invitation.id, token))

    def invitation_resent(self, invitation, token: str) -> None:
        if self.fail:
            raise RuntimeError("mail relay down")
        self.events.append(("resent", invitation.id, token))


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _enable_sqlite_fks(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def store(db: Session) -> EntityStore:
    return EntityStore(db)


@pytest.fixture(scope="function")
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture(scope="function")
def tokens() -> CountingTokens:
    return CountingTokens()


@pytest.fixture(scope="function")
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture(scope="function")
def deps(clock, tokens, notifier) -> CoreDeps:
    return CoreDeps(config=make_config(), clock=clock, tokens=tokens, notifier=notifier)


# =============================================================================
# Seed data
# =============================================================================


@dataclass
class World:
    client_a: Client
    client_b: Client
    owner_a: Affiliate
    dependent_a: Affiliate
    owner_b: Affiliate
    policy_a: Policy
    policy_a2: Policy
    policy_b: Policy
    users: dict
    principals: dict

    def principal(self, name: str) -> Principal:
        return self.principals[name]

    def user(self, name: str) -> User:
        return self.users[name]


def add_user(db: Session, role: Role, email: str | None = None, is_active: bool = True) -> User:
    user = User(
        id=uuid.uuid4(),
        email=email or f"{role.value}-{uuid.uuid4().hex[:8]}@brokerage-staff.com",
        name=role.value.replace("_", " ").title(),
        role=role,
        is_active=is_active,
    )
    db.add(user)
    db.flush()
    return user


def add_affiliate(
    db: Session,
    client: Client,
    *,
    email: str | None = None,
    primary: Affiliate | None = None,
    user: User | None = None,
    is_active: bool = True,
    first_name: str = "Ana",
    last_name: str = "Rivera",
) -> Affiliate:
    affiliate = Affiliate(
        id=uuid.uuid4(),
        client_id=client.id,
        first_name=first_name,
        last_name=last_name,
        email=email,
        affiliate_type=AffiliateType.DEPENDENT if primary else AffiliateType.OWNER,
        primary_affiliate_id=primary.id if primary else None,
        user_id=user.id if user else None,
        is_active=is_active,
    )
    db.add(affiliate)
    db.flush()
    return affiliate


def add_policy(db: Session, client: Client, *members: Affiliate) -> Policy:
    policy = Policy(id=uuid.uuid4(), client_id=client.id, policy_number=f"POL-{uuid.uuid4().hex[:10]}")
    db.add(policy)
    db.flush()
    for member in members:
        db.add(PolicyAffiliate(policy_id=policy.id, affiliate_id=member.id))
    db.flush()
    return policy


@pytest.fixture(scope="function")
def world(db: Session, store: EntityStore) -> World:
    """Two clients, one principal per role, an owner/dependent family per client."""
    client_a = Client(id=uuid.uuid4(), name="Acme Industrial")
    client_b = Client(id=uuid.uuid4(), name="Beta Logistics")
    db.add_all([client_a, client_b])
    db.flush()

    users = {
        "super_admin": add_user(db, Role.SUPER_ADMIN),
        "admin_employee": add_user(db, Role.ADMIN_EMPLOYEE),
        "claims_employee": add_user(db, Role.CLAIMS_EMPLOYEE),
        "operations_employee": add_user(db, Role.OPERATIONS_EMPLOYEE),
        "agent": add_user(db, Role.AGENT),
        "client_admin": add_user(db, Role.CLIENT_ADMIN),
        "affiliate": add_user(db, Role.AFFILIATE),
        "dependent": add_user(db, Role.AFFILIATE),
    }

    owner_a = add_affiliate(db, client_a, email="owner.a@acme.com", user=users["affiliate"])
    dependent_a = add_affiliate(
        db, client_a, email="dep.a@acme.com", primary=owner_a, user=users["dependent"], first_name="Luis"
    )
    owner_b = add_affiliate(db, client_b, email="owner.b@beta-logistics.com", first_name="Bea")
    # The client admin is itself an affiliate of client A, granted client A
    add_affiliate(db, client_a, email="admin.a@acme.com", user=users["client_admin"], first_name="Carla")
    db.add(ClientGrant(user_id=users["client_admin"].id, client_id=client_a.id))

    policy_a = add_policy(db, client_a, owner_a, dependent_a)
    policy_a2 = add_policy(db, client_a, owner_a)
    policy_b = add_policy(db, client_b, owner_b)
    db.commit()

    principals = {name: principal_from_user(store, user) for name, user in users.items()}
    return World(
        client_a=client_a,
        client_b=client_b,
        owner_a=owner_a,
        dependent_a=dependent_a,
        owner_b=owner_b,
        policy_a=policy_a,
        policy_a2=policy_a2,
        policy_b=policy_b,
        users=users,
        principals=principals,
    )
