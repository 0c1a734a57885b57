from __future__ import annotations

import logging

from relay_service.application.dto.principal import Principal
from relay_service.application.exceptions import UserNotFoundError
from relay_service.application.ports.auth import TokenVerifier
from relay_service.application.uow import UnitOfWork
from relay_service.domain.value_objects.enums import SubscriptionTier

logger = logging.getLogger(__name__)


async def authenticate(
    token: str | None,
    verifier: TokenVerifier,
    uow: UnitOfWork,
) -> Principal:
    """Verify a bearer token and resolve it to a live profile.

    Raises InvalidTokenError for a missing, forged or expired token and
    UserNotFoundError when the referenced profile no longer exists.
    """
    claims = await verifier.verify(token or "")
    profile = await uow.profiles.get_by_id(claims.user_id)
    if profile is None:
        logger.info("Token for unknown user %s rejected", claims.user_id)
        raise UserNotFoundError()

    try:
        tier = SubscriptionTier(profile.subscription_tier)
    except ValueError:
        logger.warning(
            "Unknown subscription tier %r for user %s, treating as free",
            profile.subscription_tier, profile.id,
        )
        tier = SubscriptionTier.FREE
    return Principal(user_id=profile.id, email=profile.email, tier=tier)
