from __future__ import annotations

import uuid
import datetime as dt

from sqlalchemy import BigInteger, Date, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from relay_service.infrastructure.db.base import Base


class UsageModel(Base):
    __tablename__ = "usage_tracking"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    messages_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    conversations_created: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_usage_user_day"),
    )
