from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from relay_service.domain.value_objects.enums import SubscriptionTier


@dataclass(frozen=True, slots=True)
class TokenClaims:
    """Verified claims of a bearer token, before the profile lookup."""

    user_id: UUID
    email: str | None = None


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller identity: token claims joined with the profile row."""

    user_id: UUID
    email: str
    tier: SubscriptionTier = SubscriptionTier.FREE
