"""Claim enums."""

from enum import Enum


class ClaimStatus(str, Enum):
    """Claim workflow status."""

    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
