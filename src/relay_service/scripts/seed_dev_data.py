"""Seed development data: a free-tier profile, a Luna conversation and a dev token."""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone

import jwt

from relay_service.config import settings
from relay_service.domain.entities.conversation import Conversation
from relay_service.domain.entities.message import Envelope
from relay_service.domain.value_objects.enums import SenderType, SubscriptionTier
from relay_service.infrastructure.db.base import Base
from relay_service.infrastructure.db.models import ProfileModel
from relay_service.infrastructure.db.session import AsyncSessionLocal, engine
from relay_service.infrastructure.db.uow import SqlAlchemyUoW

logger = logging.getLogger(__name__)

DEV_EMAIL = "dev@sensacall.local"


async def seed() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    now = datetime.now(timezone.utc)
    user_id = uuid.uuid4()
    conv_id = uuid.uuid4()

    async with AsyncSessionLocal() as session:
        session.add(
            ProfileModel(id=user_id, email=DEV_EMAIL, subscription_tier=SubscriptionTier.FREE.value)
        )
        await session.flush()

        uow = SqlAlchemyUoW(session)
        await uow.conversations_w.create(
            Conversation(
                id=conv_id,
                user_id=user_id,
                agent_id="luna",
                title="Chat with Luna",
                message_count=0,
                last_message_at=None,
                created_at=now,
            )
        )

        opening = [
            (SenderType.USER, "Hi Luna, rough day today."),
            (SenderType.AGENT, "I'm sorry to hear that. Want to tell me what happened?"),
        ]
        for offset, (sender, content) in enumerate(opening):
            ts = now + timedelta(seconds=offset)
            await uow.messages_w.add(
                Envelope(
                    id=uuid.uuid4(),
                    conversation_id=conv_id,
                    sender_type=sender,
                    content=content,
                    created_at=ts,
                )
            )
        await uow.conversations_w.record_exchange(conv_id, now, messages=len(opening))
        await uow.commit()

    token = jwt.encode(
        {"userId": str(user_id), "email": DEV_EMAIL, "exp": now + timedelta(days=7)},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    logger.info("Seeded profile %s with conversation %s", user_id, conv_id)
    print(f"conversation_id={conv_id}")
    print(f"token={token}")


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    asyncio.run(seed())


if __name__ == "__main__":
    main()
