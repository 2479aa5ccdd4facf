"""
Prompt API: POST /api/prompt.

Contract: 200 + {prompt, botResponse}; 400 + {error} for a missing userId or a
malformed body; 403 + {error} for a disallowed Origin; 500 + {error} with a
generic message when the completion call fails.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from chatrelay.config import get_settings
from chatrelay.dependencies import (
    OriginError,
    enforce_origin,
    get_preamble,
    get_provider,
    get_session_store,
)
from chatrelay.engine import DecodeError, build_error_body, decode_payload, process_prompt_payload

router = APIRouter(prefix="/api", tags=["prompt"])


@router.post("/prompt")
async def post_prompt(
    request: Request,
    provider=Depends(get_provider),
    store=Depends(get_session_store),
    preamble=Depends(get_preamble),
) -> JSONResponse:
    """
    Run one conversation turn for body.userId and return the assistant reply.
    """
    try:
        enforce_origin(request)
    except OriginError as exc:
        return JSONResponse(status_code=403, content=build_error_body(str(exc)))

    try:
        payload = decode_payload(await request.body())
    except DecodeError as exc:
        return JSONResponse(status_code=400, content=build_error_body(str(exc)))

    status_code, body = await process_prompt_payload(
        payload=payload,
        store=store,
        provider=provider,
        preamble=preamble,
        history_max_messages=get_settings().history_max_messages,
    )
    return JSONResponse(status_code=status_code, content=body)
