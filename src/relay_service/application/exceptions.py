from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base application error.

    ``detail`` is the only message a client ever sees; ``context`` carries
    extra safe fields for the ``{error, ...context}`` payload.
    """

    def __init__(self, detail: str = "", **context: Any) -> None:
        self.detail = detail
        self.context = context
        super().__init__(detail)

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.detail, **self.context}


class AuthError(AppError):
    pass


class InvalidTokenError(AuthError):
    def __init__(self, detail: str = "Invalid token") -> None:
        super().__init__(detail)


class UserNotFoundError(AuthError):
    def __init__(self, detail: str = "User not found") -> None:
        super().__init__(detail)


class AccessError(AppError):
    """Conversation missing or owned by someone else; both look the same."""

    def __init__(self) -> None:
        super().__init__("Conversation not found")


class QuotaExceededError(AppError):
    def __init__(self, limit: int, used: int, tier: str) -> None:
        super().__init__("Daily message limit reached", limit=limit, used=used, tier=tier)
        self.limit = limit
        self.used = used
        self.tier = tier


class PersistError(AppError):
    def __init__(self, detail: str = "Failed to save message") -> None:
        super().__init__(detail)


class UpstreamError(AppError):
    def __init__(self, detail: str = "Failed to generate AI response") -> None:
        super().__init__(detail)


class UpstreamTimeoutError(UpstreamError):
    def __init__(self) -> None:
        super().__init__("AI response timed out")


class NotConnectedError(AppError):
    def __init__(self, status: str) -> None:
        super().__init__("Not connected", status=status)


class ValidationError(AppError):
    pass
