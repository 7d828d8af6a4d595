"""Audit log service - append-only state change trail.

Every entry is written inside the unit of work of the change it records,
never as a separate best-effort write. There is no update or delete path.

Security guidelines:
- NEVER record tokens or secrets in ``changes``
- Hash emails (hash_email) when they must appear in details
- Use IDs instead of raw data where possible
"""

from __future__ import annotations

import hashlib
import json
import math
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import func, select

from brokerage.core.clock import Clock
from brokerage.core.config import CoreConfig
from brokerage.core.errors import ValidationError
from brokerage.db.enums import AuditAction
from brokerage.db.models import AuditLogEntry
from brokerage.schemas.audit import AuditEntryRead, AuditPage, ChainVerification
from brokerage.services.store import EntityStore

GENESIS_HASH = "0" * 64  # prev_hash of the first entry for an entity


def canonical_json(obj: dict | None) -> str:
    """
    Serialize object to canonical JSON for consistent hashing.

    Uses sorted keys, compact separators, and str() for non-JSON types.
    """
    return json.dumps(obj or {}, sort_keys=True, separators=(",", ":"), default=str)


def compute_entry_hash(
    prev_hash: str,
    entity_type: str,
    entity_id: str,
    action: str,
    created_at: str,
    changes_json: str,
    actor_id: str = "",
    client_id: str = "",
    from_status: str = "",
    to_status: str = "",
) -> str:
    """Hash = SHA256(all immutable fields joined with |)."""
    data = "|".join(
        [
            prev_hash,
            entity_type,
            entity_id,
            action,
            created_at,
            changes_json,
            actor_id,
            client_id,
            from_status,
            to_status,
        ]
    )
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _hash_entry(entry: AuditLogEntry, prev_hash: str) -> str:
    return compute_entry_hash(
        prev_hash=prev_hash,
        entity_type=entry.entity_type,
        entity_id=str(entry.entity_id),
        action=entry.action,
        created_at=entry.created_at.isoformat(),
        changes_json=canonical_json(entry.changes),
        actor_id=str(entry.actor_id) if entry.actor_id else "",
        client_id=str(entry.client_id) if entry.client_id else "",
        from_status=entry.from_status or "",
        to_status=entry.to_status or "",
    )


def _status_value(status: Any) -> str | None:
    if status is None:
        return None
    return status.value if hasattr(status, "value") else str(status)


def field_diff(before: dict[str, Any], after: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """{field: {"old": ..., "new": ...}} for every key whose value changed."""
    diff: dict[str, dict[str, Any]] = {}
    for key in sorted(set(before) | set(after)):
        old = before.get(key)
        new = after.get(key)
        if old != new:
            diff[key] = {"old": old, "new": new}
    return diff


def _last_entry(store: EntityStore, entity_type: str, entity_id: UUID) -> AuditLogEntry | None:
    return store.first(
        select(AuditLogEntry)
        .where(
            AuditLogEntry.entity_type == entity_type,
            AuditLogEntry.entity_id == entity_id,
        )
        .order_by(AuditLogEntry.id.desc())
    )


def record(
    store: EntityStore,
    clock: Clock,
    *,
    entity_type: str,
    entity_id: UUID,
    action: AuditAction,
    actor_id: UUID | None = None,
    client_id: UUID | None = None,
    from_status: Any = None,
    to_status: Any = None,
    changes: dict[str, Any] | None = None,
) -> AuditLogEntry:
    """
    Append one entry to an entity's trail.

    Must be called inside the caller's unit of work. ``created_at`` never goes
    backwards within one entity's trail even if the clock does.
    """
    previous = _last_entry(store, entity_type, entity_id)
    created_at: datetime = clock.now().astimezone(timezone.utc)
    if previous is not None and previous.created_at > created_at:
        created_at = previous.created_at
    prev_hash = previous.entry_hash if previous is not None else GENESIS_HASH

    entry = AuditLogEntry(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action.value,
        actor_id=actor_id,
        client_id=client_id,
        from_status=_status_value(from_status),
        to_status=_status_value(to_status),
        changes=json.loads(canonical_json(changes)) if changes else None,
        prev_hash=prev_hash,
        created_at=created_at,
    )
    entry.entry_hash = _hash_entry(entry, prev_hash)
    store.add(entry)
    store.flush()
    return entry


def list_entries(
    store: EntityStore,
    config: CoreConfig,
    entity_type: str,
    entity_id: UUID,
    page: int = 1,
    limit: int = 20,
) -> AuditPage:
    """Page through one entity's trail, oldest first (commit order)."""
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1 or limit > config.audit_page_max_limit:
        raise ValidationError(f"limit must be between 1 and {config.audit_page_max_limit}")

    filters = (
        AuditLogEntry.entity_type == entity_type,
        AuditLogEntry.entity_id == entity_id,
    )
    total = store.scalar(select(func.count(AuditLogEntry.id)).where(*filters)) or 0
    rows = store.scalars(
        select(AuditLogEntry)
        .where(*filters)
        .order_by(AuditLogEntry.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    total_pages = math.ceil(total / limit) if total else 0
    return AuditPage(
        items=[AuditEntryRead.model_validate(row) for row in rows],
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
        has_more=page < total_pages,
    )


def verify_chain(store: EntityStore, entity_type: str, entity_id: UUID) -> ChainVerification:
    """Recompute every hash in an entity's trail and report the first break."""
    rows = store.scalars(
        select(AuditLogEntry)
        .where(
            AuditLogEntry.entity_type == entity_type,
            AuditLogEntry.entity_id == entity_id,
        )
        .order_by(AuditLogEntry.id.asc())
    )
    prev_hash = GENESIS_HASH
    for row in rows:
        if row.prev_hash != prev_hash or _hash_entry(row, prev_hash) != row.entry_hash:
            return ChainVerification(valid=False, checked=len(rows), broken_entry_id=row.id)
        prev_hash = row.entry_hash
    return ChainVerification(valid=True, checked=len(rows), broken_entry_id=None)
