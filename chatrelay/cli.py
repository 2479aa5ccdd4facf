"""CLI entry point for the chat-relay package."""

from __future__ import annotations

import logging
import os
import platform
import shutil
import sys

from .config import ConfigError

GROQ_KEYS_URL = "https://console.groq.com/keys"
MIN_PYTHON = (3, 10)


def _print_setup_banner(
    provider: str,
    model: str,
    port: int,
    *,
    for_startup: bool = True,
) -> None:
    """Print setup/env instructions. If for_startup, show 'relay started' line; else show 'Setup' header."""
    provider_note = "no API key required" if provider == "stub" else "API key from .env"
    base = f"http://localhost:{port}"
    ws_base = f"ws://localhost:{port}"
    print()
    if for_startup:
        print("Chat relay started  |  Provider: {} ({})  |  Model: {}".format(provider, provider_note, model))
    else:
        print("Chat Relay Setup")
        print("Provider: {} ({})  |  Model: {}".format(provider, provider_note, model))
    print()
    print("Prompt:    POST {}/api/prompt".format(base))
    print("WebSocket: {}/".format(ws_base))
    print("Health:    {}/health".format(base))
    print()
    print("────────────────────────────────────────────")
    print("Get an API key from Groq:")
    print("   {}".format(GROQ_KEYS_URL))
    print()
    print("Create a .env file in this folder (or edit it if you already have one):")
    print()
    print("   GROQ_API_BASE_URL=https://api.groq.com/openai/v1")
    print("   GROQ_API_KEY=YOUR_KEY_HERE")
    print("   GROQ_MODEL=llama-3.3-70b-versatile")
    print("   CORS_ORIGINS=https://wagox-design.netlify.app")
    print()
    print("Set PROVIDER=stub to run without a key (replies echo the prompt).")
    print()


def _python_version_str() -> str:
    return ".".join(str(part) for part in sys.version_info[:3])


def _print_help() -> None:
    print("Chat Relay CLI")
    print()
    print("Usage:")
    print("  chat-relay               Start the relay server")
    print("  chat-relay setup         Print setup/env guidance")
    print("  chat-relay doctor        Print install/environment diagnostics")
    print()


def _print_doctor() -> None:
    from .config import get_settings
    from .preset_loader import list_preset_ids

    settings = get_settings()
    print("Chat Relay Doctor")
    print()
    print(f"Platform: {platform.platform()}")
    print(f"Python:   {_python_version_str()}")
    print(f"Exe:      {sys.executable}")
    print(f"In venv:  {'yes' if sys.prefix != sys.base_prefix else 'no'}")
    print(f"PATH bin: {shutil.which('chat-relay') or 'not found'}")
    print(f"Provider: {settings.provider_name}")
    print(f"Base URL: {settings.groq_api_base_url or 'not set'}")
    print(f"API key:  {'set' if settings.groq_api_key else 'not set'}")
    print(f"Presets:  {', '.join(list_preset_ids()) or 'none found'}")
    if sys.version_info < MIN_PYTHON:
        print(
            f"Issue: Python is below required minimum {MIN_PYTHON[0]}.{MIN_PYTHON[1]}."
        )
    try:
        settings.require_remote()
    except ConfigError as exc:
        print(f"Issue: {exc}")


def main() -> None:
    """Run the relay server or handle setup/doctor commands."""
    from .config import get_settings

    try:
        settings = get_settings()
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    if len(sys.argv) > 1:
        subcommand = sys.argv[1].strip().lower()
        if subcommand in {"-h", "--help", "help"}:
            _print_help()
            sys.exit(0)
        if subcommand == "setup":
            _print_setup_banner(
                provider=settings.provider_name,
                model=settings.groq_model,
                port=settings.http_port,
                for_startup=False,
            )
            sys.exit(0)
        if subcommand == "doctor":
            _print_doctor()
            sys.exit(0)
        print(f"Unknown command: {sys.argv[1]}", file=sys.stderr)
        _print_help()
        sys.exit(2)

    try:
        settings.require_remote()
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    import uvicorn

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s | %(levelname)-8s | %(name)-12s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    _print_setup_banner(
        provider=settings.provider_name,
        model=settings.groq_model,
        port=settings.http_port,
        for_startup=True,
    )

    uvicorn.run(
        "chatrelay.main:app",
        host=settings.host,
        port=settings.http_port,
        factory=False,
    )


if __name__ == "__main__":
    main()
    sys.exit(0)
