from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .dependencies import get_session_store
from .preset_loader import PresetLoadError, get_active_preamble
from .routers import prompt as prompt_router
from .routers import relay as relay_router


logger = logging.getLogger("chat-relay")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate configuration and load the preamble before serving."""
    settings = get_settings()
    settings.require_remote()
    preamble = get_active_preamble()
    logger.info(
        "Server starting provider=%s model=%s preamble=%s origins=%s",
        settings.provider_name,
        settings.groq_model,
        preamble.id,
        ",".join(settings.allowed_origins),
    )
    yield
    logger.info("Server shutting down; %d session(s) discarded", len(get_session_store()))


app = FastAPI(title="Chat Relay", version="0.1.0", lifespan=lifespan)


# CORS: controlled by env CORS_ORIGINS (comma separated allow-list).
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().allowed_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
)
app.include_router(prompt_router.router)
app.include_router(relay_router.router)


@app.get("/")
async def root() -> JSONResponse:
    """
    Service metadata endpoint.
    """
    settings = get_settings()
    try:
        preamble = get_active_preamble()
    except PresetLoadError as exc:
        return JSONResponse(status_code=500, content={"error": str(exc)})

    payload: Dict[str, Any] = {
        "service": settings.service_name,
        "preamble": preamble.id,
        "version": preamble.version,
        "model": settings.groq_model,
        "health": "/health",
    }
    return JSONResponse(status_code=200, content=payload)


@app.get("/health")
async def health(store=Depends(get_session_store)) -> JSONResponse:
    """
    Simple health check. Returns 200 when the preamble loads successfully.
    """
    try:
        get_active_preamble()
    except PresetLoadError as exc:
        return JSONResponse(status_code=500, content={"status": "error", "error": str(exc)})

    payload = {
        "status": "ok",
        "sessions": len(store),
        "provider": get_settings().provider_name,
    }
    return JSONResponse(status_code=200, content=payload)


def get_app() -> FastAPI:
    """Convenience accessor for external runners."""
    return app
