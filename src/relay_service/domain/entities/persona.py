from __future__ import annotations

from dataclasses import dataclass, field

from relay_service.domain.value_objects.enums import (
    SubscriptionTier,
    TraitChannel,
    TraitLevel,
)


@dataclass(frozen=True, slots=True)
class PersonaTraits:
    """One level per trait channel; every channel always has a value."""

    empathy: TraitLevel = TraitLevel.MEDIUM
    energy: TraitLevel = TraitLevel.MEDIUM
    humor: TraitLevel = TraitLevel.MEDIUM
    insight: TraitLevel = TraitLevel.MEDIUM
    structure: TraitLevel = TraitLevel.MEDIUM

    def level(self, channel: TraitChannel) -> TraitLevel:
        return getattr(self, channel.value)

    def items(self) -> list[tuple[TraitChannel, TraitLevel]]:
        return [(channel, self.level(channel)) for channel in TraitChannel]


@dataclass(frozen=True, slots=True)
class Persona:
    id: str
    name: str
    personality: str
    bio: str
    tier_required: SubscriptionTier = SubscriptionTier.FREE
    specialties: tuple[str, ...] = ()
    traits: PersonaTraits = field(default_factory=PersonaTraits)
