"""Audit log read schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel


class AuditEntryRead(BaseModel):
    """One audit entry as returned to readers."""
    id: int
    entity_type: str
    entity_id: UUID
    action: str
    actor_id: UUID | None
    client_id: UUID | None
    from_status: str | None
    to_status: str | None
    changes: dict[str, Any] | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditPage(BaseModel):
    """Page of audit entries, oldest first."""
    items: list[AuditEntryRead]
    page: int
    limit: int
    total: int
    total_pages: int
    has_more: bool


class ChainVerification(BaseModel):
    """Result of recomputing an entity's hash chain."""
    valid: bool
    checked: int
    broken_entry_id: int | None = None
