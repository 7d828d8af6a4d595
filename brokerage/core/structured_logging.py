"""Structured logging helpers (PII-safe)."""

import hashlib
from typing import Any


def hash_email(email: str | None) -> str:
    """Hash email for logs and audit details (prefix + SHA256 suffix for debugging)."""
    if not email:
        return ""
    prefix = email.split("@")[0][:3] if "@" in email else email[:3]
    suffix = hashlib.sha256(email.lower().encode()).hexdigest()[:12]
    return f"{prefix}...@[hash:{suffix}]"


def build_log_context(
    *,
    actor_id: str | None = None,
    client_id: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    email: str | None = None,
    **fields: Any,
) -> dict[str, Any]:
    """Return a PII-safe log context dict (ids only, emails hashed)."""
    context: dict[str, Any] = {}
    if actor_id:
        context["actor_id"] = str(actor_id)
    if client_id:
        context["client_id"] = str(client_id)
    if entity_type:
        context["entity_type"] = entity_type
    if entity_id:
        context["entity_id"] = str(entity_id)
    if email:
        context["email_hash"] = hash_email(email)
    for key, value in fields.items():
        if value is None or value == "":
            continue
        context[key] = value
    return context
