"""Entrypoint: python -m relay_service"""
from __future__ import annotations

import uvicorn

from relay_service.config import settings


def main() -> None:
    uvicorn.run(
        "relay_service.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_level=settings.LOG_LEVEL,
    )


if __name__ == "__main__":
    main()
