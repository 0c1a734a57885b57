from __future__ import annotations

from uuid import UUID

from relay_service.application.policies.permissions import assert_conversation_access
from relay_service.application.uow import UnitOfWork
from relay_service.infrastructure.ws.manager import ConnectionManager
from relay_service.infrastructure.ws.rooms import Connection


async def join_conversation(
    manager: ConnectionManager,
    connection: Connection,
    conversation_id: UUID,
    uow: UnitOfWork,
) -> None:
    """Admit the connection to the room only after the ownership check passes."""
    await assert_conversation_access(connection.principal, conversation_id, uow.conversations)
    await manager.join(connection.id, conversation_id)


async def leave_conversation(
    manager: ConnectionManager,
    connection: Connection,
    conversation_id: UUID,
) -> None:
    await manager.leave(connection.id, conversation_id)
