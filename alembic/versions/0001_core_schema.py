"""Core schema: principals, affiliates, invitations, claims, tickets, audit log.

Revision ID: 0001_core_schema
Revises:
Create Date: 2026-10-18

Creates:
- clients, users, client_grants, employees, agents
- affiliates (owner/dependent check), policies, policy_affiliates
- invitations (unique token, one PENDING row per invitee)
- claims, claim_invoices
- tickets, ticket_messages
- audit_log_entries (hash chained)
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_core_schema'
down_revision = None
branch_labels = None
depends_on = None


def _enum(name: str, *values: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True, length=32)


ROLE_VALUES = (
    'super_admin',
    'claims_employee',
    'operations_employee',
    'admin_employee',
    'agent',
    'client_admin',
    'affiliate',
)


def _created_at() -> sa.Column:
    return sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    # ==========================================================================
    # Tenants and principals
    # ==========================================================================
    op.create_table(
        'clients',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('role', _enum('role_enum', *ROLE_VALUES), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )

    op.create_table(
        'client_grants',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('client_id', sa.Uuid(), nullable=False),
        sa.Column('granted_by_id', sa.Uuid(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['granted_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'client_id', name='uq_client_grant'),
    )
    op.create_index('idx_client_grants_client', 'client_grants', ['client_id'])

    for table, code_column in (('employees', 'employee_code'), ('agents', 'agent_code')):
        extra = []
        if table == 'employees':
            extra = [
                sa.Column('position', sa.String(100), nullable=True),
                sa.Column('department', sa.String(100), nullable=True),
            ]
        op.create_table(
            table,
            sa.Column('id', sa.Uuid(), nullable=False),
            sa.Column('user_id', sa.Uuid(), nullable=True),
            sa.Column('first_name', sa.String(100), nullable=False),
            sa.Column('last_name', sa.String(100), nullable=False),
            sa.Column('email', sa.String(320), nullable=False),
            sa.Column('phone', sa.String(50), nullable=True),
            *extra,
            sa.Column(code_column, sa.String(50), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=False),
            _created_at(),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('user_id'),
            sa.UniqueConstraint(code_column),
        )

    # ==========================================================================
    # Affiliates and policies
    # ==========================================================================
    op.create_table(
        'affiliates',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('client_id', sa.Uuid(), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(320), nullable=True),
        sa.Column('affiliate_type', _enum('affiliatetype_enum', 'owner', 'dependent'), nullable=False),
        sa.Column('primary_affiliate_id', sa.Uuid(), nullable=True),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['primary_affiliate_id'], ['affiliates.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
        sa.CheckConstraint(
            "(affiliate_type = 'owner' AND primary_affiliate_id IS NULL) "
            "OR (affiliate_type = 'dependent' AND primary_affiliate_id IS NOT NULL)",
            name='ck_affiliate_primary_shape',
        ),
    )
    op.create_index('idx_affiliates_client', 'affiliates', ['client_id'])
    op.create_index('idx_affiliates_primary', 'affiliates', ['primary_affiliate_id'])

    op.create_table(
        'policies',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('client_id', sa.Uuid(), nullable=False),
        sa.Column('policy_number', sa.String(100), nullable=False),
        sa.Column(
            'status',
            _enum('policystatus_enum', 'active', 'pending', 'expired', 'cancelled'),
            nullable=False,
        ),
        _created_at(),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('policy_number'),
    )
    op.create_index('idx_policies_client', 'policies', ['client_id'])

    op.create_table(
        'policy_affiliates',
        sa.Column('policy_id', sa.Uuid(), nullable=False),
        sa.Column('affiliate_id', sa.Uuid(), nullable=False),
        sa.Column('added_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['policy_id'], ['policies.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['affiliate_id'], ['affiliates.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('policy_id', 'affiliate_id'),
    )

    # ==========================================================================
    # Invitations
    # ==========================================================================
    op.create_table(
        'invitations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('token', sa.String(128), nullable=False),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column(
            'invitation_type',
            _enum('invitationtype_enum', 'employee', 'agent', 'affiliate'),
            nullable=False,
        ),
        sa.Column('role', _enum('role_enum', *ROLE_VALUES), nullable=False),
        sa.Column(
            'status',
            _enum('invitationstatus_enum', 'pending', 'accepted', 'expired', 'revoked'),
            nullable=False,
        ),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('client_id', sa.Uuid(), nullable=True),
        sa.Column('affiliate_id', sa.Uuid(), nullable=True),
        sa.Column('entity_data', sa.JSON(), nullable=True),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('resend_count', sa.Integer(), nullable=False),
        sa.Column('last_resent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('accepted_user_id', sa.Uuid(), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_by_id', sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['affiliate_id'], ['affiliates.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['accepted_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['revoked_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token'),
    )
    op.create_index(
        'idx_invitations_email_type_status', 'invitations', ['email', 'invitation_type', 'status']
    )
    op.create_index('idx_invitations_affiliate', 'invitations', ['affiliate_id'])
    op.create_index(
        'uq_pending_invitation_email_type',
        'invitations',
        ['email', 'invitation_type'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )
    op.create_index(
        'uq_pending_invitation_affiliate',
        'invitations',
        ['affiliate_id'],
        unique=True,
        postgresql_where=sa.text("status = 'pending' AND affiliate_id IS NOT NULL"),
        sqlite_where=sa.text("status = 'pending' AND affiliate_id IS NOT NULL"),
    )

    # ==========================================================================
    # Claims
    # ==========================================================================
    op.create_table(
        'claims',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('client_id', sa.Uuid(), nullable=False),
        sa.Column('policy_id', sa.Uuid(), nullable=False),
        sa.Column('affiliate_id', sa.Uuid(), nullable=False),
        sa.Column('patient_id', sa.Uuid(), nullable=False),
        sa.Column(
            'status',
            _enum('claimstatus_enum', 'submitted', 'under_review', 'approved', 'rejected'),
            nullable=False,
        ),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('amount_submitted', sa.Numeric(12, 2), nullable=True),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['policy_id'], ['policies.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['affiliate_id'], ['affiliates.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['patient_id'], ['affiliates.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_claims_client_status', 'claims', ['client_id', 'status'])
    op.create_index('idx_claims_affiliate', 'claims', ['affiliate_id'])

    op.create_table(
        'claim_invoices',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('claim_id', sa.Uuid(), nullable=False),
        sa.Column('invoice_number', sa.String(100), nullable=False),
        sa.Column('provider_name', sa.String(255), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(['claim_id'], ['claims.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('claim_id', 'invoice_number', name='uq_claim_invoice_number'),
    )

    # ==========================================================================
    # Tickets
    # ==========================================================================
    op.create_table(
        'tickets',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('client_id', sa.Uuid(), nullable=False),
        sa.Column('subject', sa.String(255), nullable=False),
        sa.Column(
            'status',
            _enum('ticketstatus_enum', 'open', 'in_progress', 'waiting_on_client', 'resolved', 'closed'),
            nullable=False,
        ),
        sa.Column(
            'priority',
            _enum('ticketpriority_enum', 'low', 'normal', 'high', 'urgent'),
            nullable=False,
        ),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('message_count', sa.Integer(), nullable=False),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_tickets_client_status', 'tickets', ['client_id', 'status'])

    op.create_table(
        'ticket_messages',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('ticket_id', sa.Uuid(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('author_id', sa.Uuid(), nullable=True),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['author_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('ticket_id', 'sequence', name='uq_ticket_message_sequence'),
    )

    # ==========================================================================
    # Audit log (append-only)
    # ==========================================================================
    op.create_table(
        'audit_log_entries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('actor_id', sa.Uuid(), nullable=True),
        sa.Column('client_id', sa.Uuid(), nullable=True),
        sa.Column('from_status', sa.String(50), nullable=True),
        sa.Column('to_status', sa.String(50), nullable=True),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.Column('prev_hash', sa.String(64), nullable=False),
        sa.Column('entry_hash', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('entity_type', 'entity_id', 'prev_hash', name='uq_audit_entity_prev_hash'),
    )
    op.create_index('idx_audit_entity', 'audit_log_entries', ['entity_type', 'entity_id', 'id'])
    op.create_index('idx_audit_actor_created', 'audit_log_entries', ['actor_id', 'created_at'])


def downgrade() -> None:
    op.drop_table('audit_log_entries')
    op.drop_table('ticket_messages')
    op.drop_table('tickets')
    op.drop_table('claim_invoices')
    op.drop_table('claims')
    op.drop_table('invitations')
    op.drop_table('policy_affiliates')
    op.drop_table('policies')
    op.drop_table('affiliates')
    op.drop_table('agents')
    op.drop_table('employees')
    op.drop_table('client_grants')
    op.drop_table('users')
    op.drop_table('clients')
