from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

import yaml
from jsonschema import Draft7Validator

from .config import get_settings
from .models import Message, Preamble

logger = logging.getLogger("chat-relay")

# Preamble YAML files live in the chatrelay.presets package (chatrelay/presets/*.yaml).
PRESETS_DIR = Path(__file__).parent / "presets"

PRESET_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["id", "version", "messages"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "version": {"type": ["string", "number"]},
        "description": {"type": "string"},
        "messages": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["role", "content"],
                "properties": {
                    "role": {"enum": ["system"]},
                    "content": {"type": "string", "minLength": 1},
                },
            },
        },
    },
}


class PresetLoadError(RuntimeError):
    """Raised when a preamble preset cannot be loaded or validated."""


def _read_preset_yaml(preset_id: str) -> Dict[str, Any]:
    preset_path = PRESETS_DIR / f"{preset_id}.yaml"
    if not preset_path.exists():
        raise PresetLoadError(f"Preset file not found: {preset_path}")

    with preset_path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise PresetLoadError(f"Preset '{preset_id}' is not valid YAML: {exc}") from exc

    if not isinstance(data, dict):
        raise PresetLoadError("Preset YAML must deserialize to a mapping")

    return data


def validate_preset(raw: Dict[str, Any]) -> List[str]:
    """Return human-readable structural errors for a raw preset document."""
    validator = Draft7Validator(PRESET_SCHEMA)
    errors = []
    for err in sorted(validator.iter_errors(raw), key=lambda e: list(e.path)):
        location = "/".join(str(p) for p in err.path) or "<root>"
        errors.append(f"{location}: {err.message}")
    return errors


def load_preset(preset_id: str) -> Preamble:
    """Load and validate a preamble preset by id."""
    raw = _read_preset_yaml(preset_id)

    errors = validate_preset(raw)
    if errors:
        raise PresetLoadError(f"Invalid preset '{preset_id}': " + "; ".join(errors))

    if str(raw["id"]) != preset_id:
        raise PresetLoadError(f"Preset id '{raw['id']}' does not match file name '{preset_id}'")

    messages = tuple(Message(role="system", content=str(m["content"]).strip()) for m in raw["messages"])
    return Preamble(
        id=str(raw["id"]),
        version=str(raw["version"]),
        description=str(raw.get("description", "")),
        messages=messages,
    )


@lru_cache(maxsize=8)
def _cached_preset(preset_id: str) -> Preamble:
    preamble = load_preset(preset_id)
    logger.info("loaded preamble preset=%s version=%s messages=%d", preamble.id, preamble.version, len(preamble.messages))
    return preamble


def get_active_preamble() -> Preamble:
    """Resolve the configured preamble; constant for the process lifetime per preset id."""
    settings = get_settings()
    return _cached_preset(settings.preamble_preset)


def list_preset_ids() -> List[str]:
    """Discover preset ids from chatrelay/presets/*.yaml (filename stem = id). Returns sorted list."""
    if not PRESETS_DIR.exists():
        return []
    ids = [p.stem for p in PRESETS_DIR.glob("*.yaml") if p.is_file()]
    return sorted(ids)
