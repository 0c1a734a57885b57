from __future__ import annotations

from relay_service.domain.entities.profile import Profile
from relay_service.infrastructure.db.models.profile import ProfileModel


def model_to_entity(model: ProfileModel) -> Profile:
    return Profile(
        id=model.id,
        email=model.email,
        subscription_tier=model.subscription_tier,
    )
