"""Application configuration with environment variables."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from brokerage.core.transitions import (
    CLAIM_STATUS_ACTORS,
    WorkflowGraph,
    build_claim_graph,
    build_ticket_graph,
)

MIN_TOKEN_BYTES = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./brokerage.db"

    # Invitations
    INVITATION_EXPIRY_DAYS: int = 7
    INVITATION_TOKEN_BYTES: int = 32  # 256 bits
    BULK_INVITE_MAX_CONCURRENCY: int = 1

    # Audit log reads
    AUDIT_PAGE_MAX_LIMIT: int = 100

    # Workflow policy switches
    CLAIM_ALLOW_DIRECT_DECISION: bool = False  # SUBMITTED -> APPROVED/REJECTED
    TICKET_ALLOW_REOPEN: bool = True  # RESOLVED -> IN_PROGRESS

    @field_validator("INVITATION_TOKEN_BYTES")
    @classmethod
    def token_entropy_floor(cls, v: int) -> int:
        if v < MIN_TOKEN_BYTES:
            raise ValueError(f"INVITATION_TOKEN_BYTES must be at least {MIN_TOKEN_BYTES}")
        return v

    @field_validator("INVITATION_EXPIRY_DAYS", "BULK_INVITE_MAX_CONCURRENCY", "AUDIT_PAGE_MAX_LIMIT")
    @classmethod
    def positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v


@dataclass(frozen=True)
class CoreConfig:
    """
    Read-only reference data handed to every service.

    Built once per process from ``Settings``; safe to share across requests.
    """

    invitation_window: timedelta
    token_bytes: int
    bulk_invite_max_concurrency: int
    audit_page_max_limit: int
    claim_graph: WorkflowGraph
    ticket_graph: WorkflowGraph
    claim_status_actors: Mapping

    @classmethod
    def from_settings(cls, settings: Settings) -> "CoreConfig":
        return cls(
            invitation_window=timedelta(days=settings.INVITATION_EXPIRY_DAYS),
            token_bytes=settings.INVITATION_TOKEN_BYTES,
            bulk_invite_max_concurrency=settings.BULK_INVITE_MAX_CONCURRENCY,
            audit_page_max_limit=settings.AUDIT_PAGE_MAX_LIMIT,
            claim_graph=build_claim_graph(
                allow_direct_decision=settings.CLAIM_ALLOW_DIRECT_DECISION
            ),
            ticket_graph=build_ticket_graph(allow_reopen=settings.TICKET_ALLOW_REOPEN),
            claim_status_actors=CLAIM_STATUS_ACTORS,
        )

    def graph_for(self, entity_type: str) -> WorkflowGraph:
        if entity_type == self.claim_graph.entity_type:
            return self.claim_graph
        if entity_type == self.ticket_graph.entity_type:
            return self.ticket_graph
        raise KeyError(entity_type)
