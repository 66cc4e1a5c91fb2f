from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from .settings import DEFAULT_SETTINGS, SETTINGS_KEYS, NBackSettings

logger = logging.getLogger(__name__)

SETTINGS_PATH_ENV = "NBACK_SETTINGS_PATH"


class SettingsStore:
    """JSON persistence for the user's last-used settings.

    Only settings are stored; sessions and results are never written.
    """

    _version = 1

    def __init__(self, path: Path) -> None:
        self._path = path
        self._settings = DEFAULT_SETTINGS
        self._load()

    @classmethod
    def default_path(cls) -> Path:
        explicit = os.environ.get(SETTINGS_PATH_ENV)
        if explicit:
            return Path(explicit).expanduser()
        return Path.home() / ".nback_trainer_settings.json"

    @property
    def path(self) -> Path:
        return self._path

    @property
    def settings(self) -> NBackSettings:
        return self._settings

    def update(self, settings: NBackSettings) -> NBackSettings:
        cleaned = settings.clamped()
        if cleaned != self._settings:
            self._settings = cleaned
            self.save()
        return cleaned

    def save(self) -> bool:
        payload = {
            "version": self._version,
            "settings": self._settings.to_dict(),
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError as exc:
            logger.error("Failed to save settings to %s: %s", self._path, exc)
            return False
        return True

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("Failed to load settings from %s: %s", self._path, exc)
            return
        if not isinstance(payload, dict):
            return

        raw = payload.get("settings")
        if not isinstance(raw, dict):
            return
        missing = [key for key in SETTINGS_KEYS if key not in raw]
        if missing:
            logger.warning("Stored settings missing %s; using defaults.", ", ".join(missing))
            return
        try:
            self._settings = NBackSettings.from_dict(raw)
        except (TypeError, ValueError) as exc:
            logger.error("Stored settings are invalid (%s); using defaults.", exc)
