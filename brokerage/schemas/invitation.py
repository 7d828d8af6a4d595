"""Invitation-related Pydantic schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from brokerage.db.enums import InvitationType, Role


class EmployeeInvitePayload(BaseModel):
    """
    Entity data for an EMPLOYEE invitation.

    Stored on the invitation and used to create the Employee row on acceptance.
    """
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str | None = None
    position: str | None = None
    department: str | None = None
    employee_code: str | None = None


class AgentInvitePayload(BaseModel):
    """Entity data for an AGENT invitation."""
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str | None = None
    agent_code: str | None = None


class AffiliateInvitePayload(BaseModel):
    """AFFILIATE invitations bind an existing affiliate row."""
    affiliate_id: UUID


class InvitationIssue(BaseModel):
    """
    Input for issuing an invitation.

    Validates:
    - Email format (normalized to lowercase)
    - Role and type are enum values
    """
    email: EmailStr
    invitation_type: InvitationType
    role: Role

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return v.strip().lower()


class InvitationValidation(BaseModel):
    """Public, unauthenticated view of a token's usability."""
    valid: bool
    email: str | None = None
    invitation_type: InvitationType | None = None
    name: str | None = None
    expires_at: datetime | None = None
    reason: Literal["not_found", "accepted", "revoked", "expired"] | None = None


class AcceptedInvitation(BaseModel):
    """Outcome of a successful acceptance."""
    invitation_id: UUID
    user_id: UUID
    role: Role
    invitation_type: InvitationType
    entity_id: UUID
    created_user: bool


class BulkInviteItem(BaseModel):
    """Per-affiliate outcome of a bulk invitation."""
    affiliate_id: UUID
    success: bool
    invitation_id: UUID | None = None
    reason: str | None = None
    error_code: str | None = None


class BulkInviteResult(BaseModel):
    """Aggregated bulk invitation outcome, one item per input id in input order."""
    total: int
    success_count: int
    failed_count: int
    results: list[BulkInviteItem]
