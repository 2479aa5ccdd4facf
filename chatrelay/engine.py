from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Dict, List, Sequence, Tuple

from .models import Message, Preamble, PromptRequest, PromptResponse
from .providers import BaseProvider, CompletionFailure, EmptyCompletion
from .storage.session_store import SessionStore

logger = logging.getLogger("chat-relay")

USER_ID_REQUIRED = "userId is required to track conversations."
MALFORMED_BODY = "Request body must be a JSON object."
GROQ_EMPTY_RESPONSE = "Failed to get a response from the GROQ API."
INTERNAL_ERROR = "An internal error occurred."
RELAY_ERROR = "Error processing request"


class ValidationError(ValueError):
    """Missing or malformed client input. Raised before any side effect."""


class DecodeError(ValidationError):
    """Inbound payload is not a JSON object."""


def new_request_id() -> str:
    return str(uuid.uuid4())


def build_error_body(message: str) -> Dict[str, Any]:
    return {"error": message}


def decode_payload(raw: Any) -> Dict[str, Any]:
    """Decode bytes/str JSON into a dict, raising DecodeError otherwise."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(MALFORMED_BODY) from exc
    try:
        payload = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise DecodeError(MALFORMED_BODY) from exc
    if not isinstance(payload, dict):
        raise DecodeError(MALFORMED_BODY)
    return payload


def parse_prompt_request(payload: Dict[str, Any]) -> PromptRequest:
    """
    Validate a decoded {prompt, userId} body.

    userId must be present and not blank (whitespace-only is rejected too);
    numbers are accepted as text keys. prompt is not enforced: absent or
    null becomes "", non-strings are stringified.
    """
    user_id = payload.get("userId")
    if user_id is None or (isinstance(user_id, str) and not user_id.strip()):
        raise ValidationError(USER_ID_REQUIRED)
    if isinstance(user_id, (dict, list, bool)):
        raise ValidationError(USER_ID_REQUIRED)

    prompt = payload.get("prompt")
    if prompt is None:
        prompt = ""
    elif not isinstance(prompt, str):
        prompt = json.dumps(prompt) if isinstance(prompt, (dict, list)) else str(prompt)

    return PromptRequest(userId=str(user_id), prompt=prompt)


def build_conversation(
    preamble: Sequence[Message],
    history: Sequence[Message],
    new_user_message: Message,
) -> List[Message]:
    """Return preamble ++ history ++ [new_user_message]. Inputs are not mutated."""
    return [*preamble, *history, new_user_message]


async def run_conversation_turn(
    *,
    store: SessionStore,
    provider: BaseProvider,
    preamble: Preamble,
    request: PromptRequest,
    history_max_messages: int = 0,
) -> str:
    """
    One user/assistant round trip for a session.

    Holds the session lock for the whole turn so concurrent requests for the
    same userId are applied in arrival order. On completion failure the user
    turn stays in history and CompletionFailure propagates.
    """
    session = store.get_or_create(request.user_id)
    async with session.lock:
        prior = list(session.history)
        user_message = Message(role="user", content=request.prompt)
        session.append(user_message)

        conversation = build_conversation(preamble.messages, prior, user_message)
        try:
            reply = await provider.complete(conversation)
        finally:
            store.touch(session)

        if reply is None or not isinstance(reply, Message):
            raise EmptyCompletion("Provider returned no message")
        if reply.role != "assistant":
            reply = Message(role="assistant", content=reply.content)

        session.append(reply)
        dropped = session.trim(history_max_messages)
        if dropped:
            logger.debug("trimmed %d message(s) from session user=%s", dropped, session.session_id)
        return reply.content


def failure_message(exc: BaseException) -> str:
    """Map a pipeline failure to the non-leaking message shown to the client."""
    if isinstance(exc, EmptyCompletion):
        return GROQ_EMPTY_RESPONSE
    return INTERNAL_ERROR


async def process_prompt_payload(
    *,
    payload: Dict[str, Any],
    store: SessionStore,
    provider: BaseProvider,
    preamble: Preamble,
    history_max_messages: int = 0,
) -> Tuple[int, Dict[str, Any]]:
    """
    Core POST /api/prompt pipeline.

    Free of FastAPI Response types; returns (status_code, body).
    """
    request_id = new_request_id()
    start = time.monotonic()
    user_id = "-"
    try:
        request = parse_prompt_request(payload)
        user_id = request.user_id
        reply = await run_conversation_turn(
            store=store,
            provider=provider,
            preamble=preamble,
            request=request,
            history_max_messages=history_max_messages,
        )
        response = PromptResponse(prompt=request.prompt, bot_response=reply)
        status_code, body = 200, response.model_dump(by_alias=True)
    except ValidationError as exc:
        status_code, body = 400, build_error_body(str(exc))
    except CompletionFailure as exc:
        logger.error("Error interacting with GROQ API request_id=%s user=%s: %s", request_id, user_id, exc, exc_info=True)
        status_code, body = 500, build_error_body(failure_message(exc))
    except Exception as exc:
        logger.exception("Unexpected failure request_id=%s user=%s", request_id, user_id)
        status_code, body = 500, build_error_body(failure_message(exc))

    _log_prompt(
        request_id=request_id,
        user_id=user_id,
        provider_name=getattr(provider, "name", type(provider).__name__),
        status_code=status_code,
        latency_ms=(time.monotonic() - start) * 1000.0,
    )
    return status_code, body


def _log_prompt(
    *,
    request_id: str,
    user_id: str,
    provider_name: str,
    status_code: int,
    latency_ms: float,
) -> None:
    logger.info(
        "prompt request_id=%s user=%s provider=%s status=%s latency_ms=%.2f",
        request_id,
        user_id,
        provider_name,
        status_code,
        latency_ms,
    )
