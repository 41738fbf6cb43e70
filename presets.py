"""Named settings presets stored as JSON under the user config directory."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Optional

from restore_errors import InvalidOptions
from restore_settings import DEFAULT_SETTINGS, Settings, settings_from_mapping, settings_to_mapping
from toolchain import get_default_config_dir, progress_write

FACTORY_PRESET = "factory"
ACTIVE_PRESET_FILE = "active_preset"
PRESET_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def get_presets_dir(config_dir: Optional[Path] = None) -> Path:
    return (config_dir or get_default_config_dir()) / "presets"


def validate_preset_name(name: str) -> str:
    name = name.strip()
    if not PRESET_NAME_PATTERN.match(name):
        raise InvalidOptions(f"Invalid preset name: {name!r}")
    return name


def get_preset_path(name: str, config_dir: Optional[Path] = None) -> Path:
    return get_presets_dir(config_dir) / f"{validate_preset_name(name)}.json"


def list_presets(config_dir: Optional[Path] = None) -> list[str]:
    """Return the factory preset followed by saved presets, sorted."""
    presets_dir = get_presets_dir(config_dir)
    saved: list[str] = []
    if presets_dir.is_dir():
        saved = sorted(
            path.stem
            for path in presets_dir.glob("*.json")
            if path.is_file() and path.stem != FACTORY_PRESET
        )
    return [FACTORY_PRESET, *saved]


def load_preset(name: Optional[str], config_dir: Optional[Path] = None) -> Settings:
    """Load a preset; a missing or unreadable preset yields the defaults."""
    if not name or name == FACTORY_PRESET:
        return DEFAULT_SETTINGS

    preset_path = get_preset_path(name, config_dir)
    if not preset_path.exists():
        return DEFAULT_SETTINGS

    try:
        payload = json.loads(preset_path.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        progress_write(f"Warning: could not read preset '{name}' ({exc}); using defaults.")
        return DEFAULT_SETTINGS

    if not isinstance(payload, dict):
        progress_write(f"Warning: preset '{name}' is not a JSON object; using defaults.")
        return DEFAULT_SETTINGS
    return settings_from_mapping(payload, base=DEFAULT_SETTINGS)


def save_preset(name: str, settings: Settings, config_dir: Optional[Path] = None) -> Path:
    if name.strip() == FACTORY_PRESET:
        raise InvalidOptions("The factory preset is read-only.")
    preset_path = get_preset_path(name, config_dir)
    preset_path.parent.mkdir(parents=True, exist_ok=True)
    preset_path.write_text(json.dumps(settings_to_mapping(settings), indent=2, sort_keys=True))
    return preset_path


def active_preset_name(config_dir: Optional[Path] = None) -> str:
    marker = (config_dir or get_default_config_dir()) / ACTIVE_PRESET_FILE
    if not marker.exists():
        return FACTORY_PRESET
    name = marker.read_text().strip()
    if not name or not PRESET_NAME_PATTERN.match(name):
        return FACTORY_PRESET
    return name


def set_active_preset(name: str, config_dir: Optional[Path] = None) -> None:
    name = validate_preset_name(name)
    base = config_dir or get_default_config_dir()
    base.mkdir(parents=True, exist_ok=True)
    (base / ACTIVE_PRESET_FILE).write_text(name + "\n")
