from __future__ import annotations

from functools import lru_cache
from typing import Mapping

from fastapi import Request

from .config import get_settings
from .models import Preamble
from .preset_loader import get_active_preamble
from .providers import BaseProvider, build_provider
from .storage.session_store import SessionStore


class OriginError(RuntimeError):
    """Raised when a browser request comes from an origin outside the allow-list."""


def get_provider() -> BaseProvider:
    """
    Dependency returning the active completion provider.

    Tests rely on this function name to override the provider with a
    recording or failing double via FastAPI's dependency_overrides.
    """
    return build_provider()


@lru_cache(maxsize=1)
def _process_session_store() -> SessionStore:
    return SessionStore(ttl_seconds=get_settings().session_ttl_seconds)


def get_session_store() -> SessionStore:
    """
    Dependency returning the process-wide session store.

    Tests override it with a fresh SessionStore per test.
    """
    return _process_session_store()


def get_preamble() -> Preamble:
    return get_active_preamble()


def check_origin(headers: Mapping[str, str]) -> None:
    """
    Allow requests with no Origin header (non-browser / same-origin) or an
    Origin on the configured allow-list. "*" in CORS_ORIGINS allows all.
    """
    origin = headers.get("origin")
    if not origin:
        return
    allowed = get_settings().allowed_origins
    if "*" in allowed or origin in allowed:
        return
    raise OriginError("Not allowed by CORS")


def enforce_origin(request: Request) -> None:
    """Origin guard used by the /api endpoints."""
    check_origin(request.headers)
