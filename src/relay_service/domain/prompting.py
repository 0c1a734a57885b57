"""System directive construction from a persona's trait set."""
from __future__ import annotations

import math

from relay_service.domain.entities.persona import Persona
from relay_service.domain.value_objects.enums import TraitChannel, TraitLevel

_DIRECTIVES: dict[TraitChannel, dict[TraitLevel, str]] = {
    TraitChannel.EMPATHY: {
        TraitLevel.LOW: "Stay matter-of-fact and keep emotional commentary brief.",
        TraitLevel.MEDIUM: "Acknowledge how the user feels before moving on.",
        TraitLevel.HIGH: "Lead with warmth, validate feelings and listen without judgment.",
    },
    TraitChannel.ENERGY: {
        TraitLevel.LOW: "Keep a calm, unhurried tone.",
        TraitLevel.MEDIUM: "Keep an upbeat but relaxed tone.",
        TraitLevel.HIGH: "Be enthusiastic and motivating, celebrate every win.",
    },
    TraitChannel.HUMOR: {
        TraitLevel.LOW: "Avoid jokes unless the user starts them.",
        TraitLevel.MEDIUM: "Use light humor when it fits the moment.",
        TraitLevel.HIGH: "Be playful and witty, banter freely.",
    },
    TraitChannel.INSIGHT: {
        TraitLevel.LOW: "Keep advice simple and practical.",
        TraitLevel.MEDIUM: "Offer perspective when it helps.",
        TraitLevel.HIGH: "Offer thoughtful, deeper perspectives and ask reflective questions.",
    },
    TraitChannel.STRUCTURE: {
        TraitLevel.LOW: "Answer conversationally, without lists.",
        TraitLevel.MEDIUM: "Organize longer answers into short paragraphs.",
        TraitLevel.HIGH: "Break problems into clear numbered steps.",
    },
}


def trait_directive(channel: TraitChannel, level: TraitLevel) -> str:
    return _DIRECTIVES[channel][level]


def build_system_prompt(persona: Persona) -> str:
    directives = " ".join(
        trait_directive(channel, level) for channel, level in persona.traits.items()
    )
    return (
        f"You are {persona.name}, an AI companion. {persona.personality}. "
        f"{directives} "
        "Engage in natural, helpful conversation while maintaining your personality. "
        "Be supportive, understanding, and engaging."
    )


def estimate_tokens(prompt: str, reply: str) -> int:
    """Rough token count when the completion endpoint reports no usage."""
    words = len(reply.split()) + len(prompt.split())
    return math.ceil(words * 1.3)
