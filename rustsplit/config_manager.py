"""Configuration manager for rustsplit using TOML files.

Settings are read from ``~/.rustsplit/config.toml`` (``RUSTSPLIT_HOME``
overrides the directory) and then from ``rustsplit.toml`` in the workspace
root. Both files use an ``[extract]`` section; project values win.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import toml

from .config import BASE_DIR, MAX_VALIDATION_ATTEMPTS, PROJECT_CONFIG_NAME

logger = logging.getLogger(__name__)

CONFIG_FILE = BASE_DIR / "config.toml"
SECTION = "extract"


@dataclass
class ExtractionSettings:
    add_module_doc_comments: bool = True
    default_module_path: str = "src"
    cache_max_entries: int = 128
    max_validation_attempts: int = MAX_VALIDATION_ATTEMPTS
    settle_delay: float = 1.0
    bridge_binary: Optional[str] = None
    bridge_timeout: float = 120.0
    cleanup_unused_imports: bool = True
    rollback_on_abort: bool = True
    convert_module_files: bool = False
    suggest_missing_imports: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractionSettings":
        """Build settings from a mapping, ignoring unknown keys."""
        known = {f.name: f for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                logger.warning("Ignoring unknown setting '%s'", key)
                continue
            values[key] = value
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        # TOML has no null.
        return {k: v for k, v in asdict(self).items() if v is not None}


def _read_toml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return {}


def load_full_config() -> Dict[str, Any]:
    """Load the entire global TOML config (all sections)."""
    return _read_toml(CONFIG_FILE)


def load_settings(workspace_root: Optional[Path] = None) -> ExtractionSettings:
    """Merge defaults, the global config and the project config.

    Returns:
        Effective :class:`ExtractionSettings`. Unreadable files are
        skipped with a warning.
    """
    merged: Dict[str, Any] = {}
    merged.update(load_full_config().get(SECTION, {}))
    if workspace_root is not None:
        merged.update(_read_toml(Path(workspace_root) / PROJECT_CONFIG_NAME).get(SECTION, {}))
    return ExtractionSettings.from_dict(merged)


def _save_full_config(config: Dict[str, Any], path: Path) -> bool:
    """Write a config dict to TOML, preserving all sections."""
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(path, "w", encoding="utf-8") as f:
            toml.dump(config, f)
        return True
    except OSError as exc:
        logger.error("Could not write %s: %s", path, exc)
        return False


def save_settings(settings: ExtractionSettings, workspace_root: Optional[Path] = None) -> bool:
    """Save the ``[extract]`` section.

    Args:
        settings: Settings to persist.
        workspace_root: When given, write ``rustsplit.toml`` in that
            directory instead of the global config.

    Returns:
        True if saved successfully, False otherwise.
    """
    path = Path(workspace_root) / PROJECT_CONFIG_NAME if workspace_root else CONFIG_FILE
    config = _read_toml(path)
    config[SECTION] = settings.to_dict()
    return _save_full_config(config, path)
