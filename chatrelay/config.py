import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Load .env from current directory so GROQ_API_KEY and friends are set automatically.
load_dotenv()


DEFAULT_GROQ_MODEL = "llama-3.3-70b-versatile"


class ConfigError(RuntimeError):
    """Raised when required configuration is missing at startup."""


class Settings(BaseModel):
    """Runtime configuration loaded from environment variables."""

    provider_name: str
    groq_api_base_url: Optional[str]
    groq_api_key: Optional[str]
    groq_model: str = DEFAULT_GROQ_MODEL
    groq_timeout_seconds: float = 30.0
    preamble_preset: str = "agency"
    cors_origins: str = "https://wagox-design.netlify.app"
    history_max_messages: int = 0
    session_ttl_seconds: float = 0.0

    service_name: str = "chat-relay"
    host: str = "0.0.0.0"
    http_port: int = 5000

    @property
    def allowed_origins(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.strip().split(",") if o.strip()]

    def require_remote(self) -> None:
        """
        Fail fast when the remote completion API is selected but not configured.
        """
        if self.provider_name != "groq":
            return
        if not self.groq_api_base_url or not self.groq_api_key:
            raise ConfigError("GROQ_API_BASE_URL and GROQ_API_KEY must be set in the .env file.")


@lru_cache(maxsize=1)
def _base_settings() -> Settings:
    """
    Base settings lookup.

    Only defaults live here; `get_settings` below re-reads the environment
    on every call so tests can mutate os.environ between requests.
    """
    return Settings(
        provider_name="groq",
        groq_api_base_url=None,
        groq_api_key=None,
    )


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


def get_settings() -> Settings:
    """
    Return Settings built from the *current* environment.
    """
    base = _base_settings()
    provider_name = (os.getenv("PROVIDER") or base.provider_name).strip().lower()
    base_url = os.getenv("GROQ_API_BASE_URL") or None
    if base_url:
        base_url = base_url.rstrip("/")

    return Settings(
        provider_name=provider_name,
        groq_api_base_url=base_url,
        groq_api_key=os.getenv("GROQ_API_KEY") or None,
        groq_model=os.getenv("GROQ_MODEL") or base.groq_model,
        groq_timeout_seconds=_float_env("GROQ_TIMEOUT_SECONDS", base.groq_timeout_seconds),
        preamble_preset=os.getenv("PREAMBLE_PRESET") or base.preamble_preset,
        cors_origins=os.getenv("CORS_ORIGINS") or base.cors_origins,
        history_max_messages=max(0, _int_env("HISTORY_MAX_MESSAGES", base.history_max_messages)),
        session_ttl_seconds=max(0.0, _float_env("SESSION_TTL_SECONDS", base.session_ttl_seconds)),
        service_name=base.service_name,
        host=os.getenv("HOST") or base.host,
        http_port=_int_env("PORT", base.http_port),
    )
