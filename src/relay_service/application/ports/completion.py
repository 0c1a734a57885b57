from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Protocol

from relay_service.application.dto.completion import ChatTurn, Completion


class CompletionStream(Protocol):
    """Finite, single-use sequence of text fragments.

    ``tokens_used`` is only meaningful once iteration has finished.
    """

    tokens_used: int | None

    def __aiter__(self) -> AsyncIterator[str]: ...

    async def aclose(self) -> None: ...


class CompletionClient(Protocol):
    supports_streaming: bool

    async def complete(self, messages: Sequence[ChatTurn]) -> Completion: ...

    async def stream(self, messages: Sequence[ChatTurn]) -> CompletionStream: ...
