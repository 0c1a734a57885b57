"""FastAPI dependency injection helpers."""
from __future__ import annotations

from typing import Annotated, AsyncIterator

from fastapi import Depends, HTTPException, Request, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from relay_service.application.dto.principal import Principal
from relay_service.application.exceptions import AuthError
from relay_service.application.uow import UnitOfWork
from relay_service.services.relay import Relay

_bearer_scheme = HTTPBearer()


def get_relay(websocket: WebSocket) -> Relay:
    return websocket.app.state.relay


RelayDep = Annotated[Relay, Depends(get_relay)]


def get_http_relay(request: Request) -> Relay:
    return request.app.state.relay


async def get_uow(request: Request) -> AsyncIterator[UnitOfWork]:
    async with request.app.state.uow_factory() as uow:
        yield uow


UoWDep = Annotated[UnitOfWork, Depends(get_uow)]


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_bearer_scheme)],
    relay: Annotated[Relay, Depends(get_http_relay)],
) -> Principal:
    try:
        return await relay.authenticate(credentials.credentials)
    except AuthError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.detail,
        ) from exc


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
