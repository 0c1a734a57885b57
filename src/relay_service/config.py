from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_DB: str
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432

    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 300

    REDIS_URL: str = "redis://localhost:6379/0"

    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"

    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "info"

    WS_HEARTBEAT_SECONDS: int = 30

    RELAY_FANOUT: Literal["local", "redis"] = "redis"
    REDIS_PUBSUB_CHANNEL: str = "relay.fanout"

    FREE_TIER_DAILY_LIMIT: int = 50
    PLUS_TIER_DAILY_LIMIT: int = 500
    PRO_TIER_DAILY_LIMIT: int = 10000

    HISTORY_LIMIT: int = 10
    TYPING_TIMEOUT_SECONDS: float = 3.0

    OPENROUTER_API_KEY: str = ""
    OPENROUTER_MODEL: str = "openai/gpt-3.5-turbo"
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_REFERER: str = "https://sensacall.com"
    OPENROUTER_TITLE: str = "Sensacall AI Companion"
    COMPLETION_TEMPERATURE: float = 0.8
    COMPLETION_MAX_TOKENS: int = 1000
    COMPLETION_STREAMING: bool = True
    COMPLETION_TIMEOUT_SECONDS: float = 60.0

    RECONNECT_BASE_DELAY: float = 1.0
    RECONNECT_MAX_DELAY: float = 30.0
    RECONNECT_MAX_ATTEMPTS: int = 5

    OFFLINE_QUEUE_KEY: str = "sensacall:request-queue"

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.POSTGRES_DB}"
        )

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()  # type: ignore[call-arg]
