"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from brokerage.db.base import Base
from brokerage.db.enums import (
    AffiliateType,
    ClaimStatus,
    InvitationStatus,
    InvitationType,
    PolicyStatus,
    Role,
    TicketPriority,
    TicketStatus,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum(enum_cls: type[Enum]) -> SAEnum:
    """Closed enum column stored as its string value."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        create_constraint=True,
        length=32,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
        name=f"{enum_cls.__name__.lower()}_enum",
    )


# =============================================================================
# Tenants and principals
# =============================================================================


class Client(Base):
    """Tenant organization. Owns policies and affiliates."""

    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    affiliates: Mapped[list["Affiliate"]] = relationship(back_populates="client")
    policies: Mapped[list["Policy"]] = relationship(back_populates="client")


class User(Base):
    """
    Authenticated principal.

    Exactly one role; scoped roles read their client list from ``grants``.
    Never deleted, only deactivated.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[Role] = mapped_column(_enum(Role), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    deactivated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    grants: Mapped[list["ClientGrant"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        foreign_keys="ClientGrant.user_id",
    )
    affiliate: Mapped["Affiliate | None"] = relationship(
        back_populates="user", uselist=False, foreign_keys="Affiliate.user_id"
    )
    employee: Mapped["Employee | None"] = relationship(back_populates="user", uselist=False)
    agent: Mapped["Agent | None"] = relationship(back_populates="user", uselist=False)


class ClientGrant(Base):
    """Explicit (principal, client) access entry for scoped roles."""

    __tablename__ = "client_grants"
    __table_args__ = (
        UniqueConstraint("user_id", "client_id", name="uq_client_grant"),
        Index("idx_client_grants_client", "client_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    granted_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    user: Mapped["User"] = relationship(back_populates="grants", foreign_keys=[user_id])


class Employee(Base):
    """Broker staff record bound to a principal on invitation acceptance."""

    __tablename__ = "employees"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), unique=True, nullable=True
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    position: Mapped[str | None] = mapped_column(String(100), nullable=True)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    employee_code: Mapped[str | None] = mapped_column(String(50), unique=True, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    user: Mapped["User | None"] = relationship(back_populates="employee")


class Agent(Base):
    """Broker agent record bound to a principal on invitation acceptance."""

    __tablename__ = "agents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), unique=True, nullable=True
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    agent_code: Mapped[str | None] = mapped_column(String(50), unique=True, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    user: Mapped["User | None"] = relationship(back_populates="agent")


# =============================================================================
# Affiliates and policies
# =============================================================================


class Affiliate(Base):
    """
    Insured person under a client.

    OWNER rows have no primary; DEPENDENT rows point at an OWNER of the same
    client (depth 1, enforced in affiliate_service). At most one principal
    may be linked through ``user_id``.
    """

    __tablename__ = "affiliates"
    __table_args__ = (
        Index("idx_affiliates_client", "client_id"),
        Index("idx_affiliates_primary", "primary_affiliate_id"),
        CheckConstraint(
            "(affiliate_type = 'owner' AND primary_affiliate_id IS NULL) "
            "OR (affiliate_type = 'dependent' AND primary_affiliate_id IS NOT NULL)",
            name="ck_affiliate_primary_shape",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    affiliate_type: Mapped[AffiliateType] = mapped_column(_enum(AffiliateType), nullable=False)
    primary_affiliate_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("affiliates.id", ondelete="RESTRICT"), nullable=True
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), unique=True, nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    client: Mapped["Client"] = relationship(back_populates="affiliates")
    user: Mapped["User | None"] = relationship(back_populates="affiliate", foreign_keys=[user_id])

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Policy(Base):
    """Coverage contract held by a client."""

    __tablename__ = "policies"
    __table_args__ = (Index("idx_policies_client", "client_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    policy_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    status: Mapped[PolicyStatus] = mapped_column(
        _enum(PolicyStatus), default=PolicyStatus.ACTIVE, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    client: Mapped["Client"] = relationship(back_populates="policies")


class PolicyAffiliate(Base):
    """Affiliate membership in a policy."""

    __tablename__ = "policy_affiliates"

    policy_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("policies.id", ondelete="CASCADE"), primary_key=True
    )
    affiliate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("affiliates.id", ondelete="CASCADE"), primary_key=True
    )
    added_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)


# =============================================================================
# Invitations
# =============================================================================


class Invitation(Base):
    """
    Time-bounded, single-use credential binding an email to a future account.

    Rows are never deleted. ``status`` only changes away from PENDING.
    """

    __tablename__ = "invitations"
    __table_args__ = (
        Index("idx_invitations_email_type_status", "email", "invitation_type", "status"),
        Index("idx_invitations_affiliate", "affiliate_id"),
        Index(
            "uq_pending_invitation_email_type",
            "email",
            "invitation_type",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index(
            "uq_pending_invitation_affiliate",
            "affiliate_id",
            unique=True,
            postgresql_where=text("status = 'pending' AND affiliate_id IS NOT NULL"),
            sqlite_where=text("status = 'pending' AND affiliate_id IS NOT NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    invitation_type: Mapped[InvitationType] = mapped_column(_enum(InvitationType), nullable=False)
    role: Mapped[Role] = mapped_column(_enum(Role), nullable=False)
    status: Mapped[InvitationStatus] = mapped_column(
        _enum(InvitationStatus), default=InvitationStatus.PENDING, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    # Target binding
    client_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True
    )
    affiliate_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("affiliates.id", ondelete="SET NULL"), nullable=True
    )
    entity_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    created_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    # Resend tracking
    resend_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_resent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Acceptance tracking
    accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    accepted_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    # Revocation tracking
    revoked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    revoked_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )


# =============================================================================
# Claims
# =============================================================================


class Claim(Base):
    """Reimbursement claim against a policy for a patient."""

    __tablename__ = "claims"
    __table_args__ = (
        Index("idx_claims_client_status", "client_id", "status"),
        Index("idx_claims_affiliate", "affiliate_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    policy_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("policies.id", ondelete="RESTRICT"), nullable=False
    )
    affiliate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("affiliates.id", ondelete="RESTRICT"), nullable=False
    )  # Billing owner
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("affiliates.id", ondelete="RESTRICT"), nullable=False
    )
    status: Mapped[ClaimStatus] = mapped_column(
        _enum(ClaimStatus), default=ClaimStatus.SUBMITTED, nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount_submitted: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    created_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    invoices: Mapped[list["ClaimInvoice"]] = relationship(
        back_populates="claim", order_by="ClaimInvoice.created_at"
    )


class ClaimInvoice(Base):
    """Invoice line item attached to a claim."""

    __tablename__ = "claim_invoices"
    __table_args__ = (UniqueConstraint("claim_id", "invoice_number", name="uq_claim_invoice_number"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    claim_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("claims.id", ondelete="CASCADE"), nullable=False
    )
    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False)
    provider_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    claim: Mapped["Claim"] = relationship(back_populates="invoices")


# =============================================================================
# Tickets
# =============================================================================


class Ticket(Base):
    """Support ticket raised for a client."""

    __tablename__ = "tickets"
    __table_args__ = (Index("idx_tickets_client_status", "client_id", "status"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[TicketStatus] = mapped_column(
        _enum(TicketStatus), default=TicketStatus.OPEN, nullable=False
    )
    priority: Mapped[TicketPriority] = mapped_column(
        _enum(TicketPriority), default=TicketPriority.NORMAL, nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    message_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    messages: Mapped[list["TicketMessage"]] = relationship(
        back_populates="ticket", order_by="TicketMessage.sequence"
    )


class TicketMessage(Base):
    """Ordered message on a ticket thread."""

    __tablename__ = "ticket_messages"
    __table_args__ = (UniqueConstraint("ticket_id", "sequence", name="uq_ticket_message_sequence"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    author_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    ticket: Mapped["Ticket"] = relationship(back_populates="messages")


# =============================================================================
# Audit
# =============================================================================


class AuditLogEntry(Base):
    """
    Append-only record of a state change.

    Written in the same transaction as the change it records. ``entry_hash``
    chains each entry to the previous one for the same entity so edits are
    detectable. A ``prev_hash`` is used once per entity: of two appends racing
    from the same predecessor only one commits, which keeps the chain linear
    and the integer primary key in commit order per entity.
    """

    __tablename__ = "audit_log_entries"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "prev_hash", name="uq_audit_entity_prev_hash"),
        Index("idx_audit_entity", "entity_type", "entity_id", "id"),
        Index("idx_audit_actor_created", "actor_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # AuditAction
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)  # None for system
    client_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    from_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    to_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    changes: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    prev_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
