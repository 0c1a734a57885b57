"""Reconnecting client for the relay WebSocket protocol."""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode
from uuid import UUID

import websockets

from relay_service.application.exceptions import NotConnectedError
from relay_service.client.backoff import Backoff, ReconnectPolicy
from relay_service.domain.value_objects.enums import ConnectionStatus, PresenceStatus
from relay_service.infrastructure.ws import protocol

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], Any]
StatusListener = Callable[[ConnectionStatus], Any]
Connector = Callable[[str], Awaitable[Any]]

# Close-before-accept surfaces as 403; retrying with the same token is pointless.
AUTH_REJECTED_STATUSES = frozenset({401, 403})


class RelayClient:
    """Keeps one relay connection alive and re-joins its rooms after a drop.

    Status moves ``connecting -> connected -> disconnected`` on transport
    events. After ``policy.max_attempts`` failed reconnects it settles on
    ``error`` and stays there until :meth:`connect` is called again. A
    handshake refused with 401 or 403 goes straight to ``error``; any other
    refused handshake is retried like a dropped connection.
    """

    def __init__(
        self,
        url: str,
        token: str,
        *,
        policy: ReconnectPolicy | None = None,
        typing_timeout: float = 3.0,
        connector: Connector | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._url = url
        self._token = token
        self._backoff = Backoff(policy)
        self._typing_timeout = typing_timeout
        self._connector = connector or websockets.connect
        self._sleep = sleep

        self._status = ConnectionStatus.DISCONNECTED
        self._status_event = asyncio.Event()
        self._ws: Any = None
        self._task: asyncio.Task[None] | None = None
        self._closing = False
        self._rooms: set[UUID] = set()
        self._handlers: dict[str, list[EventHandler]] = {}
        self._status_listeners: list[StatusListener] = []
        self._typing_timers: dict[UUID, asyncio.Task[None]] = {}
        self._background: set[asyncio.Task[Any]] = set()

    # -- state -------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def rooms(self) -> frozenset[UUID]:
        return frozenset(self._rooms)

    def on(self, event: str, handler: EventHandler) -> Callable[[], None]:
        """Register a handler for one server event. Returns an unsubscribe callable."""
        self._handlers.setdefault(event, []).append(handler)
        return lambda: self._handlers.get(event, []).remove(handler)

    def on_status(self, listener: StatusListener) -> Callable[[], None]:
        self._status_listeners.append(listener)
        return lambda: self._status_listeners.remove(listener)

    async def wait_for_status(self, *statuses: ConnectionStatus) -> ConnectionStatus:
        while self._status not in statuses:
            event = self._status_event
            await event.wait()
        return self._status

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self._status:
            return
        logger.debug("Relay client status %s -> %s", self._status, status)
        self._status = status
        event, self._status_event = self._status_event, asyncio.Event()
        event.set()
        for listener in list(self._status_listeners):
            try:
                result = listener(status)
            except Exception:
                logger.exception("Status listener failed")
                continue
            if inspect.isawaitable(result):
                self._track(asyncio.ensure_future(result))

    def _track(self, task: asyncio.Future[Any]) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # -- lifecycle ---------------------------------------------------------

    async def connect(self) -> None:
        """Start (or restart after ``error``) the connection supervisor."""
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self._backoff.reset()
        self._set_status(ConnectionStatus.CONNECTING)
        self._task = asyncio.create_task(self._run(), name="relay-client")

    async def close(self) -> None:
        self._closing = True
        for timer in self._typing_timers.values():
            timer.cancel()
        self._typing_timers.clear()
        if self._ws is not None:
            await self._ws.close()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._ws = None
        self._set_status(ConnectionStatus.DISCONNECTED)

    def _uri(self) -> str:
        return f"{self._url}?{urlencode({'token': self._token})}"

    async def _run(self) -> None:
        while not self._closing:
            self._set_status(ConnectionStatus.CONNECTING)
            try:
                ws = await self._connector(self._uri())
            except websockets.exceptions.InvalidStatus as exc:
                status_code = exc.response.status_code
                if status_code in AUTH_REJECTED_STATUSES:
                    logger.error("Relay rejected the handshake: HTTP %s", status_code)
                    self._set_status(ConnectionStatus.ERROR)
                    return
                logger.warning("Relay handshake failed: HTTP %s", status_code)
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as exc:
                logger.warning("Relay connect failed: %s", exc)
            else:
                self._ws = ws
                self._backoff.reset()
                self._set_status(ConnectionStatus.CONNECTED)
                await self._rejoin()
                await self._read(ws)
                self._ws = None
                if self._closing:
                    return
            self._set_status(ConnectionStatus.DISCONNECTED)

            if self._backoff.exhausted:
                logger.error(
                    "Giving up after %d reconnect attempts", self._backoff.attempts,
                )
                self._set_status(ConnectionStatus.ERROR)
                return
            delay = self._backoff.next_delay()
            logger.info(
                "Reconnecting in %.1fs (attempt %d/%d)",
                delay, self._backoff.attempts, self._backoff.policy.max_attempts,
            )
            await self._sleep(delay)

    async def _rejoin(self) -> None:
        for conversation_id in list(self._rooms):
            try:
                await self._send(protocol.JOIN_CONVERSATION, {"conversationId": str(conversation_id)})
            except (NotConnectedError, websockets.ConnectionClosed):
                return

    async def _read(self, ws: Any) -> None:
        try:
            async for raw in ws:
                await self._dispatch(raw)
        except websockets.ConnectionClosed as exc:
            logger.info("Relay connection closed: %s", exc)

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            frame = json.loads(raw)
            event, data = frame["type"], frame.get("data") or {}
        except (ValueError, KeyError, TypeError):
            logger.warning("Dropping malformed relay frame")
            return
        self._track_membership(event, data)
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Handler for %s failed", event)

    def _track_membership(self, event: str, data: dict[str, Any]) -> None:
        if event not in (protocol.JOINED_CONVERSATION, protocol.LEFT_CONVERSATION):
            return
        try:
            conversation_id = UUID(str(data["conversationId"]))
        except (KeyError, TypeError, ValueError):
            return
        if event == protocol.JOINED_CONVERSATION:
            self._rooms.add(conversation_id)
        else:
            self._rooms.discard(conversation_id)

    # -- commands ----------------------------------------------------------

    async def _send(self, event: str, data: dict[str, Any]) -> None:
        if self._status != ConnectionStatus.CONNECTED or self._ws is None:
            raise NotConnectedError(self._status.value)
        await self._ws.send(json.dumps({"type": event, "data": data}))

    async def join(self, conversation_id: UUID) -> None:
        """Ask to join; the room is remembered for rejoins once the relay confirms it."""
        await self._send(protocol.JOIN_CONVERSATION, {"conversationId": str(conversation_id)})

    async def leave(self, conversation_id: UUID) -> None:
        self._rooms.discard(conversation_id)
        self._cancel_typing_timer(conversation_id)
        await self._send(protocol.LEAVE_CONVERSATION, {"conversationId": str(conversation_id)})

    async def send_message(self, conversation_id: UUID, content: str) -> None:
        await self._send(
            protocol.SEND_MESSAGE,
            {"conversationId": str(conversation_id), "content": content},
        )

    async def update_presence(self, conversation_id: UUID, status: PresenceStatus) -> None:
        await self._send(
            protocol.UPDATE_PRESENCE,
            {"conversationId": str(conversation_id), "status": status.value},
        )

    async def send_typing(self, conversation_id: UUID, is_typing: bool) -> None:
        """Send a typing flag; a ``True`` flag is followed by ``False`` once input goes quiet."""
        self._cancel_typing_timer(conversation_id)
        await self._send(
            protocol.TYPING,
            {"conversationId": str(conversation_id), "isTyping": is_typing},
        )
        if is_typing:
            self._typing_timers[conversation_id] = asyncio.create_task(
                self._stop_typing_later(conversation_id),
                name=f"typing-stop-{conversation_id}",
            )

    def _cancel_typing_timer(self, conversation_id: UUID) -> None:
        timer = self._typing_timers.pop(conversation_id, None)
        if timer is not None:
            timer.cancel()

    async def _stop_typing_later(self, conversation_id: UUID) -> None:
        await asyncio.sleep(self._typing_timeout)
        self._typing_timers.pop(conversation_id, None)
        try:
            await self._send(
                protocol.TYPING,
                {"conversationId": str(conversation_id), "isTyping": False},
            )
        except (NotConnectedError, websockets.ConnectionClosed):
            logger.debug("Typing stop for %s not sent", conversation_id)
