"""Tests for configuration, tokens, clocks and logging helpers."""

import logging
from datetime import datetime, timedelta, timezone

import pydantic
import pytest

from brokerage.core.clock import FixedClock
from brokerage.core.config import Settings
from brokerage.core.deps import build_deps
from brokerage.core.structured_logging import build_log_context, hash_email
from brokerage.core.tokens import SecureTokenGenerator, token_hint
from brokerage.db.models import Invitation
from brokerage.services.notification_service import LoggingNotifier, notify_safely

from conftest import RecordingNotifier, make_config


# =============================================================================
# Config
# =============================================================================


def test_defaults():
    config = make_config()
    assert config.invitation_window == timedelta(days=7)
    assert config.token_bytes == 32
    assert config.bulk_invite_max_concurrency == 1
    assert config.graph_for("claim") is config.claim_graph
    assert config.graph_for("ticket") is config.ticket_graph


def test_graph_for_unknown_entity():
    with pytest.raises(KeyError):
        make_config().graph_for("policy")


@pytest.mark.parametrize(
    "overrides",
    [
        {"INVITATION_TOKEN_BYTES": 16},
        {"INVITATION_EXPIRY_DAYS": 0},
        {"BULK_INVITE_MAX_CONCURRENCY": 0},
    ],
)
def test_settings_reject_unsafe_values(overrides):
    with pytest.raises(pydantic.ValidationError):
        Settings(_env_file=None, **overrides)


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("INVITATION_EXPIRY_DAYS", "14")
    monkeypatch.setenv("TICKET_ALLOW_REOPEN", "false")
    config = make_config()
    assert config.invitation_window == timedelta(days=14)
    assert config.ticket_graph.is_terminal("resolved") is False
    assert "in_progress" not in {s.value for s in config.ticket_graph.allowed_targets("resolved")}


def test_build_deps_wires_defaults():
    deps = build_deps(Settings(_env_file=None))
    assert isinstance(deps.notifier, LoggingNotifier)
    assert deps.clock.now().tzinfo is not None
    assert len(deps.tokens()) >= 43


# =============================================================================
# Tokens and clock
# =============================================================================


def test_secure_tokens_are_unique_and_long():
    tokens = SecureTokenGenerator()
    minted = {tokens() for _ in range(50)}
    assert len(minted) == 50
    assert all(len(t) >= 43 for t in minted)  # 32 bytes, base64url


def test_secure_tokens_refuse_low_entropy():
    with pytest.raises(ValueError):
        SecureTokenGenerator(16)


def test_token_hint_never_reveals_token():
    assert token_hint("abcdefghijklmnop") == "abcdefgh..."
    assert token_hint(None) == ""


def test_fixed_clock_is_utc():
    clock = FixedClock(datetime(2026, 1, 1, 12, 0))
    assert clock.now().tzinfo == timezone.utc
    clock.advance(timedelta(days=1))
    assert clock.now() == datetime(2026, 1, 2, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging helpers
# =============================================================================


def test_hash_email_is_stable_and_partial():
    hashed = hash_email("Someone@Acme.com")
    assert hashed == hash_email("Someone@acme.com")
    assert hashed.startswith("Som...@[hash:")
    assert "acme" not in hashed
    assert hash_email(None) == ""


def test_build_log_context_hashes_email_and_drops_empty():
    context = build_log_context(actor_id="u-1", email="a@co.com", token_hint="", extra_field=None, total=3)
    assert context == {"actor_id": "u-1", "email_hash": hash_email("a@co.com"), "total": 3}


# =============================================================================
# Notification
# =============================================================================


def test_notify_safely_swallows_failures(caplog):
    invitation = Invitation(email="a@co.com")
    failing = RecordingNotifier(fail=True)

    with caplog.at_level(logging.ERROR):
        assert notify_safely(failing, "invitation_issued", invitation, "secret-token") is False
    assert "Failed to send invitation notification" in caplog.text
    assert "secret-token" not in caplog.text
    assert notify_safely(None, "invitation_issued", invitation, "secret-token") is False
    assert notify_safely(RecordingNotifier(), "invitation_resent", invitation, "secret-token") is True
