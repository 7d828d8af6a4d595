"""Dependency wiring for the core services."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from sqlalchemy.orm import sessionmaker

from brokerage.core.clock import Clock, SystemClock
from brokerage.core.config import CoreConfig, Settings
from brokerage.core.tokens import SecureTokenGenerator, TokenGenerator
from brokerage.services.notification_service import InvitationNotifier, LoggingNotifier
from brokerage.services.store import EntityStore


@dataclass(frozen=True)
class CoreDeps:
    """
    Process-wide collaborators shared by every request.

    Everything here is read-only or stateless; per-request state lives in the
    EntityStore passed alongside.
    """

    config: CoreConfig
    clock: Clock
    tokens: TokenGenerator
    notifier: InvitationNotifier | None = None


def build_deps(
    settings: Settings | None = None,
    *,
    clock: Clock | None = None,
    tokens: TokenGenerator | None = None,
    notifier: InvitationNotifier | None = None,
) -> CoreDeps:
    settings = settings or Settings()
    config = CoreConfig.from_settings(settings)
    return CoreDeps(
        config=config,
        clock=clock or SystemClock(),
        tokens=tokens or SecureTokenGenerator(config.token_bytes),
        notifier=notifier if notifier is not None else LoggingNotifier(),
    )


@contextmanager
def store_scope(session_factory: sessionmaker) -> Iterator[EntityStore]:
    """
    Store bound to a fresh session, closed afterwards.

    Yields a store and ensures its session is closed after use.
    """
    session = session_factory()
    try:
        yield EntityStore(session)
    finally:
        session.close()
