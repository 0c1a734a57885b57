from __future__ import annotations

from typing import Protocol


class SocketSender(Protocol):
    """The part of a server-side socket the relay writes to."""

    async def send_text(self, data: str) -> None: ...
