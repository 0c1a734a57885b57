from __future__ import annotations

from enum import IntEnum, StrEnum


class SubscriptionTier(StrEnum):
    FREE = "free"
    PLUS = "plus"
    PRO = "pro"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    def covers(self, required: SubscriptionTier) -> bool:
        return self.rank >= required.rank


_TIER_RANK = {
    SubscriptionTier.FREE: 0,
    SubscriptionTier.PLUS: 1,
    SubscriptionTier.PRO: 2,
}


class SenderType(StrEnum):
    USER = "user"
    AGENT = "agent"


class PresenceStatus(StrEnum):
    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"


class ConnectionStatus(StrEnum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class TraitChannel(StrEnum):
    EMPATHY = "empathy"
    ENERGY = "energy"
    HUMOR = "humor"
    INSIGHT = "insight"
    STRUCTURE = "structure"


class TraitLevel(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
