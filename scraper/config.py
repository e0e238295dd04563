"""Settings management for the scraper."""
from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

log = logging.getLogger(__name__)

APP_NAME = "OpenListScraper"


# ---------------------------------------------------------------------------
# Platform-appropriate settings directory
# ---------------------------------------------------------------------------

def settings_dir() -> Path:
    """Return the platform settings directory (not created)."""
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", Path.home()))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / APP_NAME


def default_settings_file() -> Path:
    return settings_dir() / "settings.json"


# ---------------------------------------------------------------------------
# Default values for every known key
# ---------------------------------------------------------------------------

DEFAULT_VIDEO_EXTENSIONS = "mkv,mp4,avi,mov,iso,rmvb"

DEFAULT_SETTINGS: dict[str, Any] = {
    # Scanning
    "video_extensions": DEFAULT_VIDEO_EXTENSIONS,
    "custom_rules_path": "",
    "max_workers": 1,
    "skip_metadata": False,
    "confirmation_timeout": 0.0,  # seconds; 0 waits forever

    # Renaming
    "rename_batch_size": 0,  # 0 = backend default
    "chunk_delay": 0.5,

    # TMDB
    "tmdb_api_key": "",
    "tmdb_access_token": "",
    "tmdb_language": "en-US",

    # Semantic matcher
    "llm_base_url": "https://api.openai.com/v1",
    "llm_api_key": "",
    "llm_model": "gpt-3.5-turbo",

    # Source
    "source_type": "local",
    "openlist_url": "",
    "openlist_token": "",

    "log_level": "INFO",
}


_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off", ""}


def parse_bool(value: Any) -> bool:
    """Interpret a JSON value as a boolean; strings like "false" are False."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ValueError(f"not a boolean: {value!r}")


def parse_extensions(value: str | None) -> frozenset[str]:
    """'mkv, .MP4' -> {'mkv', 'mp4'}"""
    if not value:
        return frozenset()
    return frozenset(
        part.strip().lstrip(".").lower()
        for part in value.split(",")
        if part.strip().lstrip(".")
    )


@dataclass(frozen=True)
class ScanSettings:
    """Configuration consumed by the scanner."""
    video_extensions: str = DEFAULT_VIDEO_EXTENSIONS
    rename_batch_size: int = 0
    chunk_delay: float = 0.5
    custom_rules_path: str = ""
    max_workers: int = 1
    confirmation_timeout: float = 0.0
    skip_metadata: bool = False

    @property
    def extensions(self) -> frozenset[str]:
        return parse_extensions(self.video_extensions)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ScanSettings:
        values: dict[str, Any] = {}
        for name in (f.name for f in fields(cls)):
            if name not in data or data[name] is None:
                continue
            default = getattr(cls, name)
            convert = parse_bool if isinstance(default, bool) else type(default)
            try:
                values[name] = convert(data[name])
            except (TypeError, ValueError):
                log.warning("Ignoring invalid setting %s=%r", name, data[name])
        return cls(**values)


# ---------------------------------------------------------------------------
# SettingsManager -- single authority for reading / writing settings
# ---------------------------------------------------------------------------

class SettingsManager:
    """Settings store backed by a JSON file.

    Usage:
        mgr = SettingsManager()
        key = mgr.get("tmdb_api_key")
        mgr.set("tmdb_api_key", "abc123")
        mgr.save()
    """

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path else default_settings_file()
        self._data = self._load()

    # -- public API -------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        fallback = DEFAULT_SETTINGS.get(key, default)
        return self._data.get(key, fallback)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def save(self) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, ensure_ascii=False)
            return True
        except IOError as e:
            log.error("Could not save settings to %s: %s", self.path, e)
            return False

    def all(self) -> dict[str, Any]:
        """Return a merged view: defaults + saved values."""
        merged = DEFAULT_SETTINGS.copy()
        merged.update(self._data)
        return merged

    def reload(self) -> None:
        self._data = self._load()

    def scan_settings(self) -> ScanSettings:
        return ScanSettings.from_mapping(self.all())

    # -- private ----------------------------------------------------------

    def _load(self) -> dict[str, Any]:
        if self.path.exists():
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return data
                log.warning("Settings file %s is not an object; ignoring", self.path)
            except (json.JSONDecodeError, IOError) as e:
                log.warning("Could not read settings %s: %s", self.path, e)
        return {}
