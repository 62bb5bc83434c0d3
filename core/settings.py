"""
ResoCtrl — Settings Persistence
Stores the mixer connection (host/port) between runs. Nothing else persists.
"""

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from core.models import ConnectionSettings

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_DIR = Path.home() / ".resoctrl"
SETTINGS_FILE = "settings.json"
SETTINGS_KEY = "resolume_settings"


def get_settings_path(base: Path | None = None) -> Path:
    """Get the path of the settings file."""
    base = base or DEFAULT_SETTINGS_DIR
    return base / SETTINGS_FILE


def load_settings(base: Path | None = None) -> ConnectionSettings:
    """Load saved connection settings.

    Falls back to defaults (127.0.0.1:8080) when nothing has been saved yet or
    the file can't be used.
    """
    path = get_settings_path(base)
    if not path.exists():
        return ConnectionSettings()
    try:
        stored = json.loads(path.read_text())
        saved = stored.get(SETTINGS_KEY) if isinstance(stored, dict) else None
        if saved is None:
            return ConnectionSettings()
        return ConnectionSettings.model_validate(saved)
    except (OSError, ValueError, ValidationError) as e:
        logger.warning("Ignoring unreadable settings at %s: %s", path, e)
        return ConnectionSettings()


def save_settings(settings: ConnectionSettings, base: Path | None = None) -> Path:
    """Write connection settings, replacing whatever was saved before.

    Other top-level keys in the file are left alone.

    Returns:
        Path to the settings file.
    """
    path = get_settings_path(base)
    path.parent.mkdir(parents=True, exist_ok=True)
    stored = {}
    if path.exists():
        try:
            stored = json.loads(path.read_text())
        except (OSError, ValueError):
            stored = {}
        if not isinstance(stored, dict):
            stored = {}
    stored[SETTINGS_KEY] = settings.model_dump()
    path.write_text(json.dumps(stored, indent=2))
    return path
