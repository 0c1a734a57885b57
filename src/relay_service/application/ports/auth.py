from __future__ import annotations

from typing import Protocol

from relay_service.application.dto.principal import TokenClaims


class TokenVerifier(Protocol):
    async def verify(self, token: str) -> TokenClaims: ...
