from __future__ import annotations

import logging
from uuid import UUID

import jwt

from relay_service.application.dto.principal import TokenClaims
from relay_service.application.exceptions import InvalidTokenError

logger = logging.getLogger(__name__)


class HS256Verifier:
    """Verify bearer tokens signed with the shared secret used by the REST API."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    async def verify(self, token: str) -> TokenClaims:
        if not token:
            raise InvalidTokenError("Authentication required")
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.PyJWTError as exc:
            logger.debug("Token rejected: %s", exc)
            raise InvalidTokenError() from exc

        # REST tokens carry ``userId``; standard ``sub`` is accepted too.
        raw_user_id = payload.get("userId", payload.get("sub"))
        try:
            user_id = UUID(str(raw_user_id))
        except ValueError as exc:
            raise InvalidTokenError() from exc
        return TokenClaims(user_id=user_id, email=payload.get("email"))
