"""Configuration paths and fixed names for rustsplit."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

BASE_DIR = Path(os.environ.get("RUSTSPLIT_HOME", str(Path.home() / ".rustsplit"))).expanduser()
PROJECT_CONFIG_NAME = "rustsplit.toml"
CACHE_DIR_NAME = ".rustsplit-cache"
CACHE_DB_NAME = "analysis.db"
BACKUP_DIR_NAME = "backups"

SOURCE_ROOT_NAME = "src"
MANIFEST_NAME = "Cargo.toml"
INDEX_FILE_NAMES = ("mod.rs", "lib.rs", "main.rs")
ROOT_ENTRY_FILES = ("lib.rs", "main.rs")

MODULE_NAME_PATTERN = r"^[a-z][a-z0-9_]*$"
MAX_VALIDATION_ATTEMPTS = 3


def cache_dir(workspace_root: Path) -> Path:
    return Path(workspace_root) / CACHE_DIR_NAME


def find_workspace_root(start: Path) -> Optional[Path]:
    """Nearest ancestor of *start* (inclusive) that holds a ``Cargo.toml``."""
    current = Path(start).resolve()
    if current.is_file():
        current = current.parent
    for candidate in [current, *current.parents]:
        if (candidate / MANIFEST_NAME).is_file():
            return candidate
    return None
