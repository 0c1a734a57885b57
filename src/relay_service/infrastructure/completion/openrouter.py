"""OpenRouter chat-completions client (OpenAI-compatible API)."""
from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import AsyncExitStack
from typing import Any

import httpx

from relay_service.application.dto.completion import ChatTurn, Completion
from relay_service.application.exceptions import UpstreamError

logger = logging.getLogger(__name__)


class OpenRouterClient:
    """Implements application.ports.completion.CompletionClient."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        api_key: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        streaming: bool = True,
        referer: str = "https://sensacall.com",
        title: str = "Sensacall AI Companion",
    ) -> None:
        self._http = http
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self.supports_streaming = streaming
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": referer,
            "X-Title": title,
        }

    def _body(self, messages: Sequence[ChatTurn], *, stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self._model,
            "messages": [m.to_dict() for m in messages],
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "stream": stream,
        }
        if stream:
            body["stream_options"] = {"include_usage": True}
        return body

    async def complete(self, messages: Sequence[ChatTurn]) -> Completion:
        try:
            resp = await self._http.post(
                "/chat/completions",
                headers=self._headers,
                json=self._body(messages, stream=False),
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("OpenRouter completion failed: %s", exc)
            raise UpstreamError() from exc

        choices = data.get("choices") or []
        if not choices:
            raise UpstreamError()
        content = (choices[0].get("message") or {}).get("content") or ""
        usage = data.get("usage") or {}
        return Completion(content=content, tokens_used=usage.get("total_tokens"))

    async def stream(self, messages: Sequence[ChatTurn]) -> OpenRouterStream:
        stack = AsyncExitStack()
        try:
            resp = await stack.enter_async_context(
                self._http.stream(
                    "POST",
                    "/chat/completions",
                    headers=self._headers,
                    json=self._body(messages, stream=True),
                )
            )
            if resp.status_code >= 400:
                await resp.aread()
                logger.error(
                    "OpenRouter streaming rejected: HTTP %s %s",
                    resp.status_code,
                    resp.text[:200],
                )
                raise UpstreamError()
        except httpx.HTTPError as exc:
            await stack.aclose()
            logger.error("OpenRouter streaming failed: %s", exc)
            raise UpstreamError() from exc
        except UpstreamError:
            await stack.aclose()
            raise
        return OpenRouterStream(resp, stack)


class OpenRouterStream:
    """Server-sent-event fragments of one completion. Iterate once."""

    def __init__(self, response: httpx.Response, stack: AsyncExitStack) -> None:
        self._response = response
        self._stack = stack
        self._consumed = False
        self.tokens_used: int | None = None

    def __aiter__(self) -> AsyncIterator[str]:
        if self._consumed:
            raise RuntimeError("completion stream already consumed")
        self._consumed = True
        return self._fragments()

    async def _fragments(self) -> AsyncIterator[str]:
        try:
            async for line in self._response.aiter_lines():
                fragment = self._parse_line(line)
                if fragment is _DONE:
                    break
                if fragment:
                    yield fragment
        except httpx.HTTPError as exc:
            logger.error("OpenRouter stream interrupted: %s", exc)
            raise UpstreamError() from exc
        finally:
            await self.aclose()

    def _parse_line(self, line: str) -> str | object | None:
        # SSE comments such as ": OPENROUTER PROCESSING" are keepalives.
        if not line or line.startswith(":") or not line.startswith("data:"):
            return None
        data = line[len("data:"):].strip()
        if not data:
            return None
        if data == "[DONE]":
            return _DONE
        try:
            obj = json.loads(data)
        except ValueError:
            return None

        usage = obj.get("usage")
        if isinstance(usage, dict) and usage.get("total_tokens") is not None:
            self.tokens_used = int(usage["total_tokens"])

        choices = obj.get("choices")
        if not isinstance(choices, list) or not choices:
            return None
        delta = choices[0].get("delta") if isinstance(choices[0], dict) else None
        if not isinstance(delta, dict):
            return None
        content = delta.get("content")
        return content if isinstance(content, str) and content else None

    async def aclose(self) -> None:
        await self._stack.aclose()


_DONE = object()
