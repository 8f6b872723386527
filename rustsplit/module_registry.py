"""Locate and update the file that declares a new module.

Rust only compiles a module file that some parent declares with
``mod name;``. For a new ``src/models/billing.rs`` the registry finds the
owning file (``src/models/mod.rs``, ``src/models.rs``, an ancestor index
file or finally ``src/lib.rs``/``src/main.rs``), and inserts the
declaration plus an optional ``pub use name::*;`` re-export.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from .config import (
    INDEX_FILE_NAMES,
    MODULE_NAME_PATTERN,
    ROOT_ENTRY_FILES,
    SOURCE_ROOT_NAME,
)
from .errors import InputError
from .lexer import brace_depths, mask_literals

_MOD_LINE = re.compile(r"^[ \t]*(?:pub(?:\s*\([^)]*\))?\s+)?mod\s+[A-Za-z_]\w*\s*;", re.MULTILINE)
_USE_STMT = re.compile(r"(?:\bpub(?:\s*\([^)]*\))?\s+)?\buse\s+[^;]+;")
_HEADER_LINE = re.compile(r"^\s*(?://!|#!\[|$)")


def validate_module_name(name: str) -> None:
    if not re.match(MODULE_NAME_PATTERN, name or ""):
        raise InputError(
            f"Invalid module name '{name}': use lowercase letters, digits and "
            "underscores, starting with a letter"
        )


@dataclass
class Registration:
    """Result of planning a ``mod`` declaration in a registration file."""
    file: Path
    original_text: str
    new_text: str
    already_registered: bool = False
    path_attribute: Optional[str] = None
    insert_offset: int = 0

    @property
    def changed(self) -> bool:
        return self.new_text != self.original_text

    def shift(self, offset: int) -> int:
        """Where *offset* of the original text ends up in the new text."""
        if not self.changed or offset < self.insert_offset:
            return offset
        return offset + len(self.new_text) - len(self.original_text)


class ModuleRegistry:
    """Filesystem probing and text edits for module registration."""

    def __init__(self, workspace_root: Path, logger: Optional[logging.Logger] = None) -> None:
        self.workspace_root = Path(workspace_root).resolve()
        self.source_root = self.workspace_root / SOURCE_ROOT_NAME
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Target paths
    # ------------------------------------------------------------------

    def resolve_module_file(
        self,
        module_name: str,
        module_path: Optional[str] = None,
        default_dir: str = SOURCE_ROOT_NAME,
    ) -> Path:
        """Absolute path of the new module file.

        Without *module_path* the file goes to ``<default_dir>/<name>.rs``.
        An explicit path may use backslashes and may omit the ``.rs``
        suffix, but must stay inside the workspace.
        """
        if module_path:
            normalized = module_path.strip().replace("\\", "/")
            if not normalized.endswith(".rs"):
                normalized += ".rs"
            candidate = Path(normalized)
            if not candidate.is_absolute():
                candidate = self.workspace_root / candidate
        else:
            candidate = self.workspace_root / default_dir / f"{module_name}.rs"
        candidate = candidate.resolve()
        if candidate != self.workspace_root and self.workspace_root not in candidate.parents:
            raise InputError(f"Module path {candidate} is outside the workspace {self.workspace_root}")
        return candidate

    def owner_dir(self, module_file: Path) -> Path:
        """Directory whose module owns *module_file*."""
        module_file = Path(module_file)
        if module_file.name == "mod.rs":
            return module_file.parent.parent
        return module_file.parent

    # ------------------------------------------------------------------
    # Registration file lookup
    # ------------------------------------------------------------------

    def registration_candidates(self, module_file: Path) -> List[Path]:
        owner = self.owner_dir(Path(module_file).resolve())
        candidates: List[Path] = [owner / name for name in INDEX_FILE_NAMES]
        if self._inside_source(owner) and owner != self.source_root:
            candidates.append(owner.parent / f"{owner.name}.rs")
            for ancestor in owner.parents:
                if not self._inside_source(ancestor):
                    break
                candidates.extend(ancestor / name for name in INDEX_FILE_NAMES)
                if ancestor != self.source_root:
                    candidates.append(ancestor.parent / f"{ancestor.name}.rs")
        candidates.extend(self.source_root / name for name in ROOT_ENTRY_FILES)
        unique: List[Path] = []
        for candidate in candidates:
            if candidate not in unique:
                unique.append(candidate)
        return unique

    def find_registration_file(self, module_file: Path) -> Optional[Path]:
        module_file = Path(module_file).resolve()
        for candidate in self.registration_candidates(module_file):
            if candidate != module_file and candidate.is_file():
                return candidate
        return None

    def _inside_source(self, path: Path) -> bool:
        return path == self.source_root or self.source_root in path.parents

    # ------------------------------------------------------------------
    # Declaration text
    # ------------------------------------------------------------------

    @staticmethod
    def is_registered(text: str, module_name: str) -> bool:
        pattern = rf"^\s*(?:pub(?:\s*\([^)]*\))?\s+)?mod\s+{re.escape(module_name)}\s*;"
        return re.search(pattern, mask_literals(text), re.MULTILINE) is not None

    @staticmethod
    def is_reexported(text: str, module_name: str) -> bool:
        pattern = rf"^\s*pub\s+use\s+(?:self::)?{re.escape(module_name)}\s*::\s*\*\s*;"
        return re.search(pattern, mask_literals(text), re.MULTILINE) is not None

    def path_attribute(self, registration_file: Path, module_name: str, module_file: Path) -> Optional[str]:
        """Relative ``#[path]`` value, or ``None`` if the default lookup finds the file."""
        registration_file = Path(registration_file)
        module_file = Path(module_file).resolve()
        if registration_file.name in INDEX_FILE_NAMES:
            child_dir = registration_file.parent
        else:
            child_dir = registration_file.parent / registration_file.stem
        expected = {child_dir / f"{module_name}.rs", child_dir / module_name / "mod.rs"}
        if module_file in {p.resolve() for p in expected}:
            return None
        relative = os.path.relpath(module_file, registration_file.parent.resolve())
        return Path(relative).as_posix()

    def plan_registration(
        self,
        registration_file: Path,
        text: str,
        module_name: str,
        module_file: Path,
        reexport: bool,
    ) -> Registration:
        """Compute the registration file's new text without writing it."""
        if self.is_registered(text, module_name):
            self.logger.info("Module %s already declared in %s", module_name, registration_file)
            return Registration(registration_file, text, text, already_registered=True)

        path_attr = self.path_attribute(registration_file, module_name, module_file)
        block: List[str] = []
        if path_attr:
            block.append(f'#[path = "{path_attr}"]')
        block.append(f"pub mod {module_name};")
        if reexport and not self.is_reexported(text, module_name):
            block.append(f"pub use {module_name}::*;")

        lines = text.split("\n")
        index, fallback = self.insert_line(text)
        insert_offset = min(sum(len(line) + 1 for line in lines[:index]), len(text))
        if fallback != "mod":
            if index > 0 and lines[index - 1].strip():
                block.insert(0, "")
            if index < len(lines) and lines[index].strip():
                block.append("")
        lines[index:index] = block
        return Registration(
            registration_file, text, "\n".join(lines),
            path_attribute=path_attr, insert_offset=insert_offset,
        )

    def insert_line(self, text: str) -> Tuple[int, str]:
        """Line index to insert at, and which anchor was used.

        Order: after the last ``mod x;``, after the last top-level ``use``,
        then below the inner doc comments and attributes at the top.
        """
        masked = mask_literals(text)
        mod_matches = list(_MOD_LINE.finditer(masked))
        if mod_matches:
            return masked.count("\n", 0, mod_matches[-1].end()) + 1, "mod"

        use_matches = list(_USE_STMT.finditer(masked))
        depths = brace_depths(masked, [m.start() for m in use_matches])
        top_level = [m for m, depth in zip(use_matches, depths) if depth == 0]
        if top_level:
            return masked.count("\n", 0, top_level[-1].end()) + 1, "use"

        lines = text.split("\n")
        index = 0
        while index < len(lines) and _HEADER_LINE.match(lines[index]):
            index += 1
        # Keep blank lines that follow the header below the new block.
        while index > 0 and not lines[index - 1].strip():
            index -= 1
        return index, "top"

    # ------------------------------------------------------------------
    # File -> folder conversion
    # ------------------------------------------------------------------

    def check_module_conversion(self, module_file: Path) -> Optional[Tuple[Path, Path]]:
        """``(models.rs, models/mod.rs)`` when the target folder's module is a flat file."""
        owner = self.owner_dir(Path(module_file).resolve())
        if owner == self.source_root or not self._inside_source(owner):
            return None
        flat = owner.parent / f"{owner.name}.rs"
        index = owner / "mod.rs"
        if flat.is_file() and not index.exists():
            return flat, index
        return None

    def convert_module_to_folder(self, flat_file: Path, index_file: Path) -> None:
        index_file.parent.mkdir(parents=True, exist_ok=True)
        flat_file.rename(index_file)
        self.logger.info("Converted %s to %s", flat_file, index_file)
