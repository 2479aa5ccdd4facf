from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

import httpx

from .config import get_settings
from .models import Message


class CompletionFailure(RuntimeError):
    """Raised when the remote completion call does not produce an assistant message."""


class EmptyCompletion(CompletionFailure):
    """The remote API answered, but without a usable choice."""


class TransportError(CompletionFailure):
    """Network-level failure (connect, timeout, protocol) talking to the remote API."""


class BaseProvider:
    """
    Abstract completion client.

    `complete` is async: the relay runs on a single event loop and every
    remote call is a suspension point.
    """

    name = "base"

    async def complete(self, messages: Sequence[Message]) -> Message:  # pragma: no cover - interface only
        raise NotImplementedError


class StubProvider(BaseProvider):
    """
    Deterministic offline provider.

    Echoes the last user message so local runs and tests need no API key.
    """

    name = "stub"

    async def complete(self, messages: Sequence[Message]) -> Message:
        if not messages:
            raise CompletionFailure("Completion request must contain at least one message")
        last_user = next((m.content for m in reversed(messages) if m.role == "user"), "")
        return Message(role="assistant", content=f"stub reply: {last_user}".strip())


def _extract_reply(data: Any) -> str:
    """Pull the first choice's message content out of a chat-completions payload."""
    if not isinstance(data, dict):
        raise EmptyCompletion("Completion response is not a JSON object")
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise EmptyCompletion("Completion response has no choices")
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str):
        raise EmptyCompletion("Completion response choice has no message content")
    return content


class GroqProvider(BaseProvider):
    """
    Groq chat-completions provider (OpenAI-compatible wire format).

    One request per call; retry policy belongs to the caller.
    """

    name = "groq"

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        # Tests pass httpx.MockTransport here.
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    async def complete(self, messages: Sequence[Message]) -> Message:
        if not messages:
            raise CompletionFailure("Completion request must contain at least one message")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_wire() for m in messages],
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.endpoint, headers=headers, json=body)
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise CompletionFailure(f"Completion API returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Completion API request failed: {exc}") from exc

        try:
            data = resp.json()
        except ValueError as exc:
            raise EmptyCompletion("Completion response is not valid JSON") from exc

        return Message(role="assistant", content=_extract_reply(data))


def build_provider() -> BaseProvider:
    """Factory that chooses the concrete provider implementation."""
    settings = get_settings()
    if settings.provider_name == "stub":
        return StubProvider()
    if settings.provider_name == "groq":
        settings.require_remote()
        return GroqProvider(
            api_key=settings.groq_api_key or "",
            base_url=settings.groq_api_base_url or "",
            model=settings.groq_model,
            timeout=settings.groq_timeout_seconds,
        )
    raise ValueError(f"Unknown PROVIDER: {settings.provider_name!r} (expected 'groq' or 'stub')")
