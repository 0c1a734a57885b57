from __future__ import annotations

import asyncio
import uuid

import pytest

from relay_service.application.exceptions import AccessError
from relay_service.domain.value_objects.enums import PresenceStatus
from relay_service.infrastructure.ws import protocol
from relay_service.infrastructure.ws.manager import ConnectionManager
from relay_service.services import room_service
from tests.conftest import (
    FakePublisher,
    FakeSocket,
    FakeUoW,
    make_conversation,
    make_principal,
)


@pytest.fixture
def manager(clock) -> ConnectionManager:
    return ConnectionManager(clock=clock, typing_timeout=0.05)


def _register(manager, principal=None):
    socket = FakeSocket()
    conn = manager.register(socket, principal or make_principal())
    return conn, socket


@pytest.mark.asyncio
async def test_join_publishes_full_presence(manager):
    room = uuid.uuid4()
    a, sock_a = _register(manager)
    b, sock_b = _register(manager)

    await manager.join(a.id, room)
    await manager.join(b.id, room)

    sync = sock_a.frames(protocol.PRESENCE_SYNC)[-1]["data"]
    assert sync["conversationId"] == str(room)
    assert sync["presence"] == {
        str(a.user_id): {"status": "online", "updatedAt": "2026-10-19T12:00:00+00:00"},
        str(b.user_id): {"status": "online", "updatedAt": "2026-10-19T12:00:00+00:00"},
    }
    assert sock_b.frames(protocol.PRESENCE_SYNC)[-1]["data"] == sync


@pytest.mark.asyncio
async def test_presence_merges_connections_of_one_user(manager, clock):
    room = uuid.uuid4()
    user = make_principal()
    tab1, sock = _register(manager, user)
    tab2, _ = _register(manager, user)
    await manager.join(tab1.id, room)
    await manager.join(tab2.id, room)

    clock.advance(5)
    await manager.update_presence(tab2.id, room, PresenceStatus.AWAY)

    state = manager.presence_state(room)
    assert state[user.user_id].status == PresenceStatus.ONLINE
    assert state[user.user_id].updated_at == clock.now()
    assert sock.frames(protocol.PRESENCE_SYNC)[-1]["data"]["presence"][str(user.user_id)]["status"] == "online"

    await manager.update_presence(tab1.id, room, PresenceStatus.AWAY)
    assert manager.presence_state(room)[user.user_id].status == PresenceStatus.AWAY


@pytest.mark.asyncio
async def test_leave_is_idempotent_and_drops_empty_room(manager):
    room = uuid.uuid4()
    conn, _ = _register(manager)
    await manager.join(conn.id, room)

    assert await manager.leave(conn.id, room) is True
    assert await manager.leave(conn.id, room) is False
    assert manager.room_members(room) == set()
    assert room not in conn.rooms


@pytest.mark.asyncio
async def test_leave_republishes_presence_to_remaining(manager):
    room = uuid.uuid4()
    a, _ = _register(manager)
    b, sock_b = _register(manager)
    await manager.join(a.id, room)
    await manager.join(b.id, room)

    await manager.leave(a.id, room)

    presence = sock_b.frames(protocol.PRESENCE_SYNC)[-1]["data"]["presence"]
    assert list(presence) == [str(b.user_id)]


@pytest.mark.asyncio
async def test_broadcast_excludes_and_reaches_members_only(manager):
    room = uuid.uuid4()
    a, sock_a = _register(manager)
    b, sock_b = _register(manager)
    outsider, sock_out = _register(manager)
    await manager.join(a.id, room)
    await manager.join(b.id, room)

    await manager.broadcast(room, protocol.NEW_MESSAGE, {"x": 1}, exclude=a.id)

    assert sock_b.frames(protocol.NEW_MESSAGE) == [{"type": "new_message", "data": {"x": 1}}]
    assert sock_a.frames(protocol.NEW_MESSAGE) == []
    assert sock_out.sent == []


@pytest.mark.asyncio
async def test_dead_socket_is_unregistered_on_broadcast(manager):
    room = uuid.uuid4()
    a, sock_a = _register(manager)
    b, _ = _register(manager)
    await manager.join(a.id, room)
    await manager.join(b.id, room)

    sock_a.broken = True
    await manager.broadcast(room, protocol.NEW_MESSAGE, {})

    assert manager.get(a.id) is None
    assert manager.room_members(room) == {b.id}


@pytest.mark.asyncio
async def test_send_to_unknown_connection(manager):
    assert await manager.send_to("missing", protocol.PONG, {}) is False


@pytest.mark.asyncio
async def test_typing_broadcast_skips_sender(manager):
    room = uuid.uuid4()
    a, sock_a = _register(manager)
    b, sock_b = _register(manager)
    await manager.join(a.id, room)
    await manager.join(b.id, room)

    await manager.set_typing(a.id, room, True)

    assert sock_b.frames(protocol.USER_TYPING)[-1]["data"] == {
        "userId": str(a.user_id),
        "conversationId": str(room),
        "isTyping": True,
    }
    assert sock_a.frames(protocol.USER_TYPING) == []
    assert manager.typing_users(room) == {a.user_id}


@pytest.mark.asyncio
async def test_typing_refresh_does_not_rebroadcast(manager):
    room = uuid.uuid4()
    a, _ = _register(manager)
    b, sock_b = _register(manager)
    await manager.join(a.id, room)
    await manager.join(b.id, room)

    await manager.set_typing(a.id, room, True)
    await manager.set_typing(a.id, room, True)

    assert len(sock_b.frames(protocol.USER_TYPING)) == 1


@pytest.mark.asyncio
async def test_typing_expires_after_quiet_window(manager):
    room = uuid.uuid4()
    a, _ = _register(manager)
    b, sock_b = _register(manager)
    await manager.join(a.id, room)
    await manager.join(b.id, room)

    await manager.set_typing(a.id, room, True)
    await asyncio.sleep(0.1)

    assert [f["data"]["isTyping"] for f in sock_b.frames(protocol.USER_TYPING)] == [True, False]
    assert manager.typing_users(room) == set()


@pytest.mark.asyncio
async def test_typing_refresh_extends_quiet_window(clock):
    manager = ConnectionManager(clock=clock, typing_timeout=0.2)
    room = uuid.uuid4()
    a, _ = _register(manager)
    b, sock_b = _register(manager)
    await manager.join(a.id, room)
    await manager.join(b.id, room)

    def typing_flags():
        return [f["data"]["isTyping"] for f in sock_b.frames(protocol.USER_TYPING)]

    await manager.set_typing(a.id, room, True)
    await asyncio.sleep(0.1)
    assert typing_flags() == [True]

    await manager.set_typing(a.id, room, True)
    await asyncio.sleep(0.15)
    assert typing_flags() == [True]
    assert manager.typing_users(room) == {a.user_id}

    await asyncio.sleep(0.15)
    assert typing_flags() == [True, False]
    assert manager.typing_users(room) == set()


@pytest.mark.asyncio
async def test_explicit_stop_typing(manager):
    room = uuid.uuid4()
    a, _ = _register(manager)
    b, sock_b = _register(manager)
    await manager.join(a.id, room)
    await manager.join(b.id, room)

    await manager.set_typing(a.id, room, True)
    await manager.set_typing(a.id, room, False)
    await asyncio.sleep(0.1)

    assert [f["data"]["isTyping"] for f in sock_b.frames(protocol.USER_TYPING)] == [True, False]


@pytest.mark.asyncio
async def test_typing_from_non_member_is_ignored(manager):
    room = uuid.uuid4()
    a, _ = _register(manager)
    b, sock_b = _register(manager)
    await manager.join(b.id, room)

    await manager.set_typing(a.id, room, True)

    assert sock_b.frames(protocol.USER_TYPING) == []
    assert manager.typing_users(room) == set()


@pytest.mark.asyncio
async def test_disconnect_clears_typing_and_presence(manager):
    room = uuid.uuid4()
    a, _ = _register(manager)
    b, sock_b = _register(manager)
    await manager.join(a.id, room)
    await manager.join(b.id, room)
    await manager.set_typing(a.id, room, True)

    await manager.unregister(a.id)

    assert sock_b.frames(protocol.USER_TYPING)[-1]["data"]["isTyping"] is False
    assert list(sock_b.frames(protocol.PRESENCE_SYNC)[-1]["data"]["presence"]) == [str(b.user_id)]
    assert manager.typing_users(room) == set()
    assert manager.connection_count == 1


@pytest.mark.asyncio
async def test_publisher_receives_room_broadcasts(clock):
    publisher = FakePublisher()
    manager = ConnectionManager(publisher=publisher, clock=clock)
    room = uuid.uuid4()
    conn, sock = _register(manager)
    await manager.join(conn.id, room)

    await manager.set_agent_typing(room, True)

    assert publisher.published == [
        (room, protocol.AGENT_TYPING, {"conversationId": str(room), "isTyping": True}, None)
    ]
    # delivery happens when the frame comes back from the fan-out channel
    assert sock.frames(protocol.AGENT_TYPING) == []


@pytest.mark.asyncio
async def test_join_conversation_checks_ownership(manager):
    owner = make_principal()
    intruder = make_principal()
    uow = FakeUoW()
    conv = uow.add_conversation(make_conversation(owner.user_id))
    conn, sock = _register(manager, intruder)

    with pytest.raises(AccessError) as exc:
        await room_service.join_conversation(manager, conn, conv.id, uow)

    assert exc.value.detail == "Conversation not found"
    assert not manager.is_member(conn.id, conv.id)
    assert sock.sent == []


@pytest.mark.asyncio
async def test_join_missing_conversation_looks_the_same(manager):
    conn, _ = _register(manager)

    with pytest.raises(AccessError) as exc:
        await room_service.join_conversation(manager, conn, uuid.uuid4(), FakeUoW())

    assert exc.value.detail == "Conversation not found"
