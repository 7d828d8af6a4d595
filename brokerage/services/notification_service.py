"""Invitation delivery hooks.

The core only announces that a token should reach an invitee; delivery is
someone else's job and its failures never change a committed outcome.
"""

from __future__ import annotations

import logging
from typing import Protocol

from brokerage.core.structured_logging import build_log_context
from brokerage.core.tokens import token_hint
from brokerage.db.models import Invitation

logger = logging.getLogger(__name__)


class InvitationNotifier(Protocol):
    def invitation_issued(self, invitation: Invitation, token: str) -> None: ...

    def invitation_resent(self, invitation: Invitation, token: str) -> None: ...


class LoggingNotifier:
    """Default notifier: records that a delivery was requested."""

    def invitation_issued(self, invitation: Invitation, token: str) -> None:
        logger.info(
            "Invitation delivery requested",
            extra=build_log_context(
                entity_type="invitation",
                entity_id=str(invitation.id),
                email=invitation.email,
                token_hint=token_hint(token),
            ),
        )

    def invitation_resent(self, invitation: Invitation, token: str) -> None:
        logger.info(
            "Invitation re-delivery requested",
            extra=build_log_context(
                entity_type="invitation",
                entity_id=str(invitation.id),
                email=invitation.email,
                token_hint=token_hint(token),
            ),
        )


def notify_safely(notifier: InvitationNotifier | None, event: str, invitation: Invitation, token: str) -> bool:
    """Call ``notifier.<event>``; log and swallow delivery failures."""
    if notifier is None:
        return False
    try:
        getattr(notifier, event)(invitation, token)
        return True
    except Exception:
        logger.exception(
            "Failed to send invitation notification",
            extra=build_log_context(
                entity_type="invitation",
                entity_id=str(invitation.id),
                email=invitation.email,
                notification=event,
            ),
        )
        return False
