"""
Data models for the chat relay.

Defines Message, Preamble, and the HTTP/WebSocket payload shapes.
Do not duplicate these definitions elsewhere.
"""

from __future__ import annotations

from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["system", "user", "assistant"]


class Message(BaseModel):
    """A single role-tagged dialogue entry. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str

    def to_wire(self) -> dict:
        return {"role": self.role, "content": self.content}


class Preamble(BaseModel):
    """Fixed system instructions prepended to every completion request."""

    model_config = ConfigDict(frozen=True)

    id: str
    version: str
    description: str = ""
    messages: Tuple[Message, ...]


class PromptRequest(BaseModel):
    """Parsed POST /api/prompt body (also the WebSocket inbound envelope)."""

    user_id: Optional[str] = Field(default=None, alias="userId")
    prompt: str = ""


class PromptResponse(BaseModel):
    prompt: str
    bot_response: str = Field(serialization_alias="botResponse")


class RelayEnvelope(BaseModel):
    """Outbound WebSocket frame."""

    bot_response: str = Field(serialization_alias="botResponse")
