"""
WebSocket relay: each inbound text frame {userId, prompt} produces exactly one
outbound frame {botResponse}. Conversation state lives in the session store,
not in the connection; a bad frame is answered with a generic error and the
connection stays open.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, WebSocket
from starlette.websockets import WebSocketDisconnect

from chatrelay.config import get_settings
from chatrelay.dependencies import (
    OriginError,
    check_origin,
    get_preamble,
    get_provider,
    get_session_store,
)
from chatrelay.engine import (
    RELAY_ERROR,
    ValidationError,
    decode_payload,
    parse_prompt_request,
    run_conversation_turn,
)
from chatrelay.models import Preamble, RelayEnvelope
from chatrelay.providers import BaseProvider, CompletionFailure
from chatrelay.storage.session_store import SessionStore

logger = logging.getLogger("chat-relay")

router = APIRouter(tags=["relay"])


async def handle_frame(
    raw: Any,
    *,
    store: SessionStore,
    provider: BaseProvider,
    preamble: Preamble,
    history_max_messages: int = 0,
) -> str:
    """Process one inbound frame and return the botResponse text to send back."""
    try:
        request = parse_prompt_request(decode_payload(raw))
        logger.info("Received message from user %s (%d chars)", request.user_id, len(request.prompt))
        return await run_conversation_turn(
            store=store,
            provider=provider,
            preamble=preamble,
            request=request,
            history_max_messages=history_max_messages,
        )
    except ValidationError as exc:
        logger.warning("Rejected relay frame: %s", exc)
    except CompletionFailure:
        logger.error("Relay completion failed", exc_info=True)
    except Exception:
        logger.exception("Unexpected relay failure")
    return RELAY_ERROR


@router.websocket("/")
@router.websocket("/ws")
async def relay(
    websocket: WebSocket,
    provider=Depends(get_provider),
    store=Depends(get_session_store),
    preamble=Depends(get_preamble),
) -> None:
    try:
        check_origin(websocket.headers)
    except OriginError:
        logger.warning("Rejected WebSocket from origin %s", websocket.headers.get("origin"))
        await websocket.close(code=1008)
        return

    await websocket.accept()
    logger.info("New client connected")
    history_max_messages = get_settings().history_max_messages
    # Frames on one connection are answered in arrival order, one turn at a time.
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            reply = await handle_frame(
                raw,
                store=store,
                provider=provider,
                preamble=preamble,
                history_max_messages=history_max_messages,
            )
            envelope = RelayEnvelope(bot_response=reply)
            await websocket.send_json(envelope.model_dump(by_alias=True))
    except WebSocketDisconnect:
        pass
    finally:
        logger.info("Client disconnected")
