"""Exponential reconnect backoff."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ReconnectPolicy:
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 5


class Backoff:
    """Counts consecutive failed attempts; delay doubles per attempt up to a cap."""

    def __init__(self, policy: ReconnectPolicy | None = None) -> None:
        self.policy = policy or ReconnectPolicy()
        self.attempts = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.policy.max_attempts

    def next_delay(self) -> float:
        delay = min(self.policy.base_delay * (2 ** self.attempts), self.policy.max_delay)
        self.attempts += 1
        return delay

    def reset(self) -> None:
        self.attempts = 0
