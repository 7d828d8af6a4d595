"""Enum definitions for application constants."""

from brokerage.db.enums.audit import AuditAction, AuditEntityType
from brokerage.db.enums.auth import Role
from brokerage.db.enums.claims import ClaimStatus
from brokerage.db.enums.clients import AffiliateType, PolicyStatus
from brokerage.db.enums.invitations import InvitationStatus, InvitationType
from brokerage.db.enums.permissions import (
    AFFILIATE_ROLES,
    AGENT_ROLES,
    BROKER_EMPLOYEES,
    EMPLOYEE_ROLES,
    GLOBAL_SCOPE_ROLES,
    ROLES_CAN_INVITE_AFFILIATES,
    ROLES_CAN_INVITE_EMPLOYEES,
    ROLES_CAN_MANAGE_ACCESS,
    SCOPED_ROLES,
)
from brokerage.db.enums.ticketing import TicketPriority, TicketStatus

__all__ = [
    "AFFILIATE_ROLES",
    "AGENT_ROLES",
    "AffiliateType",
    "AuditAction",
    "AuditEntityType",
    "BROKER_EMPLOYEES",
    "ClaimStatus",
    "EMPLOYEE_ROLES",
    "GLOBAL_SCOPE_ROLES",
    "InvitationStatus",
    "InvitationType",
    "PolicyStatus",
    "ROLES_CAN_INVITE_AFFILIATES",
    "ROLES_CAN_INVITE_EMPLOYEES",
    "ROLES_CAN_MANAGE_ACCESS",
    "Role",
    "SCOPED_ROLES",
    "TicketPriority",
    "TicketStatus",
]
