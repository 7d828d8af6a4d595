"""Audit log enums."""

from enum import Enum


class AuditEntityType(str, Enum):
    """Entity types that own an audit trail."""

    CLAIM = "claim"
    TICKET = "ticket"
    INVITATION = "invitation"
    USER = "user"
    AFFILIATE = "affiliate"


class AuditAction(str, Enum):
    """What an audit entry records."""

    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    FIELD_CHANGED = "field_changed"

    # Invitations
    INVITATION_ISSUED = "invitation_issued"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_RESENT = "invitation_resent"
    INVITATION_REVOKED = "invitation_revoked"
    INVITATION_EXPIRED = "invitation_expired"

    # Claim sub-mutations
    CLAIM_INVOICE_ADDED = "claim_invoice_added"
    CLAIM_INVOICE_REMOVED = "claim_invoice_removed"

    # Tickets
    TICKET_MESSAGE_ADDED = "ticket_message_added"

    # Principals
    ROLE_CHANGED = "role_changed"
    CLIENT_ACCESS_REPLACED = "client_access_replaced"
    USER_DEACTIVATED = "user_deactivated"
