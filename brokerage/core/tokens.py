"""Invitation token minting."""

from __future__ import annotations

import secrets
from typing import Protocol

from brokerage.core.config import MIN_TOKEN_BYTES


class TokenGenerator(Protocol):
    def __call__(self) -> str: ...


class SecureTokenGenerator:
    """URL-safe tokens from the OS CSPRNG (``nbytes`` of entropy)."""

    def __init__(self, nbytes: int = MIN_TOKEN_BYTES):
        if nbytes < MIN_TOKEN_BYTES:
            raise ValueError(f"Token entropy must be at least {MIN_TOKEN_BYTES} bytes")
        self.nbytes = nbytes

    def __call__(self) -> str:
        return secrets.token_urlsafe(self.nbytes)


def token_hint(token: str | None) -> str:
    """Loggable prefix of a token. Never log the full value."""
    if not token:
        return ""
    return f"{token[:8]}..."
