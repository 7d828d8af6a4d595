"""Client, affiliate and policy enums."""

from enum import Enum


class AffiliateType(str, Enum):
    """Affiliate kind. DEPENDENTs are covered through an OWNER."""

    OWNER = "owner"
    DEPENDENT = "dependent"


class PolicyStatus(str, Enum):
    """Policy contract status."""

    ACTIVE = "active"
    PENDING = "pending"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
