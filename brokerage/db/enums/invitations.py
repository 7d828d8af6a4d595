"""Invitation enums."""

from enum import Enum


class InvitationType(str, Enum):
    """What the invitee becomes on acceptance."""

    EMPLOYEE = "employee"
    AGENT = "agent"
    AFFILIATE = "affiliate"


class InvitationStatus(str, Enum):
    """
    Invitation lifecycle status.

    Only PENDING has outbound edges; the other three are terminal.
    """

    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    REVOKED = "revoked"
