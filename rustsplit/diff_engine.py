"""DiffEngine for previewing extraction changes and rolling them back."""

from __future__ import annotations

import difflib
import json
import shutil
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Literal, Optional

ChangeType = Literal["create", "modify", "delete"]


@dataclass
class FileChange:
    """A planned change to one file."""
    file_path: str
    change_type: ChangeType
    original_content: Optional[str] = None
    new_content: Optional[str] = None


class DiffEngine:
    """Handles previewing changes and backing files up before they are written."""

    def __init__(self, backup_dir: Path):
        """Initialize DiffEngine.

        Args:
            backup_dir: Directory to store backups, usually
                ``<workspace>/.rustsplit-cache/backups``.
        """
        self.backup_dir = Path(backup_dir)

    def create_diff(self, original: str, modified: str, filename: str = "file") -> str:
        """Create unified diff between two versions.

        Args:
            original: Original content
            modified: Modified content
            filename: Name of file for diff header

        Returns:
            Unified diff string
        """
        diff = difflib.unified_diff(
            original.splitlines(keepends=True),
            modified.splitlines(keepends=True),
            fromfile=f"a/{filename}",
            tofile=f"b/{filename}",
        )
        return "".join(diff)

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def begin_backup(self, description: str) -> str:
        """Start an empty backup set and return its ID."""
        backup_id = f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"
        backup_path = self.backup_dir / backup_id
        backup_path.mkdir(parents=True, exist_ok=True)
        self._write_metadata(backup_path, {
            "description": description,
            "timestamp": datetime.now().isoformat(),
            "files": [],
        })
        return backup_id

    def snapshot(self, backup_id: str, file_path: Path) -> None:
        """Record *file_path*'s current state before it is touched.

        Files that do not exist yet are recorded as such, so rollback can
        delete them again. Only the first snapshot of a path counts.
        """
        backup_path = self.backup_dir / backup_id
        metadata = self._read_metadata(backup_path)
        file_path = Path(file_path).resolve()
        if any(entry["original"] == str(file_path) for entry in metadata["files"]):
            return

        entry: Dict[str, Optional[str]] = {"original": str(file_path), "backup": None}
        if file_path.exists():
            backup_file = backup_path / f"{len(metadata['files']):04d}_{file_path.name}"
            shutil.copy2(file_path, backup_file)
            entry["backup"] = str(backup_file)
        metadata["files"].append(entry)
        self._write_metadata(backup_path, metadata)

    def record_created_dir(self, backup_id: str, directory: Path) -> None:
        """Remember a directory created by the change; rollback removes it if empty."""
        backup_path = self.backup_dir / backup_id
        metadata = self._read_metadata(backup_path)
        metadata.setdefault("created_dirs", []).append(str(Path(directory).resolve()))
        self._write_metadata(backup_path, metadata)

    def rollback(self, backup_id: str) -> bool:
        """Restore every snapshotted file, newest first.

        Args:
            backup_id: ID of backup to restore

        Returns:
            True if successful, False if the backup does not exist
        """
        backup_path = self.backup_dir / backup_id
        if not (backup_path / "metadata.json").exists():
            return False

        metadata = self._read_metadata(backup_path)
        for entry in reversed(metadata["files"]):
            original = Path(entry["original"])
            if entry["backup"] is None:
                if original.exists():
                    original.unlink()
            else:
                original.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(entry["backup"], original)
        for directory in reversed(metadata.get("created_dirs", [])):
            path = Path(directory)
            if path.is_dir() and not any(path.iterdir()):
                path.rmdir()
        metadata["rolled_back"] = datetime.now().isoformat()
        self._write_metadata(backup_path, metadata)
        return True

    def list_backups(self) -> List[dict]:
        """List all available backups, newest first."""
        if not self.backup_dir.exists():
            return []
        backups = []
        for backup_path in self.backup_dir.iterdir():
            metadata_file = backup_path / "metadata.json"
            if backup_path.is_dir() and metadata_file.exists():
                metadata = self._read_metadata(backup_path)
                metadata["backup_id"] = backup_path.name
                backups.append(metadata)
        return sorted(backups, key=lambda x: x["timestamp"], reverse=True)

    @staticmethod
    def _read_metadata(backup_path: Path) -> dict:
        return json.loads((backup_path / "metadata.json").read_text(encoding="utf-8"))

    @staticmethod
    def _write_metadata(backup_path: Path, metadata: dict) -> None:
        (backup_path / "metadata.json").write_text(json.dumps(metadata, indent=2), encoding="utf-8")

