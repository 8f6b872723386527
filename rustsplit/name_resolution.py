"""Import suggestions for type names the moved code does not resolve.

Candidates come from three places:

* a table of common ``std``/``core`` items;
* well-known items of external crates, offered only when the crate is
  listed in the workspace ``Cargo.toml``;
* public items declared in the crate's own ``src/`` tree.

Each candidate is scored against the wanted name (exact, prefix, suffix,
small edit distance, path substring). Only exact matches are turned into
``use`` lines automatically; the rest are reported as suggestions.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Set, Tuple

import toml

from .config import SOURCE_ROOT_NAME
from .import_resolver import module_path_from_file
from .models import (
    EnumInfo,
    FunctionInfo,
    ImportableItem,
    ImportMatch,
    ItemSource,
    StructInfo,
    TraitInfo,
)
from .parser import StructuralParser, create_parser

RELEVANCE_THRESHOLD = 0.3
DEPENDENCY_TABLES = ("dependencies", "dev-dependencies", "build-dependencies")

STD_ITEMS: List[Tuple[str, str]] = [
    ("std::collections::HashMap", "struct"),
    ("std::collections::HashSet", "struct"),
    ("std::collections::BTreeMap", "struct"),
    ("std::collections::BTreeSet", "struct"),
    ("std::collections::VecDeque", "struct"),
    ("std::collections::LinkedList", "struct"),
    ("std::collections::BinaryHeap", "struct"),
    ("std::sync::Arc", "struct"),
    ("std::sync::Mutex", "struct"),
    ("std::sync::RwLock", "struct"),
    ("std::rc::Rc", "struct"),
    ("std::cell::Cell", "struct"),
    ("std::cell::RefCell", "struct"),
    ("std::fmt::Display", "trait"),
    ("std::fmt::Debug", "trait"),
    ("std::fmt::Formatter", "struct"),
    ("std::io::Read", "trait"),
    ("std::io::Write", "trait"),
    ("std::fs::File", "struct"),
    ("std::path::Path", "struct"),
    ("std::path::PathBuf", "struct"),
    ("std::time::Duration", "struct"),
    ("std::time::Instant", "struct"),
    ("std::error::Error", "trait"),
    ("std::str::FromStr", "trait"),
    ("std::hash::Hash", "trait"),
    ("std::marker::PhantomData", "struct"),
]

CORE_ITEMS: List[Tuple[str, str]] = [
    ("core::cmp::Ordering", "enum"),
    ("core::marker::Send", "trait"),
    ("core::marker::Sync", "trait"),
    ("core::ops::Deref", "trait"),
    ("core::convert::TryFrom", "trait"),
]

# Full path and kind; the first segment is the crate name.
EXTERNAL_ITEMS: List[Tuple[str, str]] = [
    ("serde::Serialize", "trait"),
    ("serde::Deserialize", "trait"),
    ("serde_json::Value", "enum"),
    ("tokio::spawn", "function"),
    ("tokio::join", "macro"),
    ("clap::Parser", "trait"),
    ("tracing::info", "macro"),
    ("tracing::debug", "macro"),
    ("uuid::Uuid", "struct"),
    ("chrono::DateTime", "struct"),
    ("chrono::Utc", "struct"),
    ("regex::Regex", "struct"),
    ("anyhow::Error", "struct"),
]


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance between *a* and *b*."""
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, 1):
        current = [i]
        for j, char_b in enumerate(b, 1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j], current[j - 1], previous[j - 1]))
        previous = current
    return previous[-1]


def match_score(search: str, item: ImportableItem) -> Tuple[float, str, int]:
    """Confidence that *item* is what *search* refers to, with the match kind."""
    if search == item.name:
        return 1.0, "exact", 0
    if item.name.startswith(search):
        return 0.8, "prefix", 0
    if item.name.endswith(search):
        return 0.7, "suffix", 0
    distance = edit_distance(search, item.name)
    if distance <= 2 and item.name:
        return (1.0 - distance / len(item.name)) * 0.6, "edit_distance", distance
    if search.lower() in item.full_path.lower():
        return 0.4, "path", 0
    return 0.0, "none", 0


def _table_items(table: List[Tuple[str, str]], source: ItemSource) -> List[ImportableItem]:
    items = []
    for full_path, kind in table:
        crate_name = full_path.split("::", 1)[0]
        items.append(ImportableItem(
            full_path=full_path,
            name=full_path.rsplit("::", 1)[-1],
            kind=kind,
            source=source,
            crate_name=crate_name if source is ItemSource.EXTERNAL else None,
        ))
    return items


class NameResolver:
    """Finds importable items whose names match unresolved type names."""

    def __init__(
        self,
        workspace_root: Path,
        parser: Optional[StructuralParser] = None,
        max_suggestions: int = 50,
        include_externals: bool = True,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.workspace_root = Path(workspace_root).resolve()
        self.parser = parser or create_parser()
        self.max_suggestions = max_suggestions
        self.include_externals = include_externals
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    def items(self) -> List[ImportableItem]:
        """Every candidate, crate-local items first.

        Local items are rescanned on each call since extractions move them.
        """
        items = self.local_items()
        items.extend(_table_items(STD_ITEMS, ItemSource.STD))
        items.extend(_table_items(CORE_ITEMS, ItemSource.CORE))
        if self.include_externals:
            dependencies = self.dependencies()
            items.extend(
                item for item in _table_items(EXTERNAL_ITEMS, ItemSource.EXTERNAL)
                if item.crate_name in dependencies
            )
        return items

    def dependencies(self) -> Set[str]:
        """Crate names (as written in code) declared in ``Cargo.toml``."""
        manifest = self.workspace_root / "Cargo.toml"
        if not manifest.exists():
            return set()
        try:
            with open(manifest, "r", encoding="utf-8") as f:
                data = toml.load(f)
        except (OSError, toml.TomlDecodeError) as exc:
            self.logger.warning("Could not read %s: %s", manifest, exc)
            return set()
        names: Set[str] = set()
        for table in DEPENDENCY_TABLES:
            names.update(name.replace("-", "_") for name in data.get(table, {}) or {})
        return names

    def local_items(self) -> List[ImportableItem]:
        """Crate-visible top-level structs, enums, traits and functions under ``src/``."""
        source_root = self.workspace_root / SOURCE_ROOT_NAME
        items: List[ImportableItem] = []
        if not source_root.is_dir():
            return items
        for file_path in sorted(source_root.rglob("*.rs")):
            try:
                text = file_path.read_text(encoding="utf-8")
            except OSError as exc:
                self.logger.warning("Skipping %s: %s", file_path, exc)
                continue
            module_path = module_path_from_file(self.workspace_root, file_path)
            for decl in self.parser.parse(text):
                kind = _local_kind(decl)
                if kind is None or decl.visibility.rank == 0:
                    continue
                items.append(ImportableItem(
                    full_path="::".join(["crate"] + module_path + [decl.name]),
                    name=decl.name,
                    kind=kind,
                    source=ItemSource.LOCAL,
                ))
        self.logger.debug("Indexed %d local item(s) under %s", len(items), source_root)
        return items

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def find_matches(self, names: Iterable[str]) -> List[ImportMatch]:
        """Relevant candidates for *names*, most confident first."""
        candidates = self.items()
        matches: List[ImportMatch] = []
        for name in names:
            for item in candidates:
                confidence, match_type, distance = match_score(name, item)
                if confidence > RELEVANCE_THRESHOLD:
                    matches.append(ImportMatch(item, confidence, match_type, distance))
        matches.sort(key=lambda m: m.confidence, reverse=True)
        return matches[:self.max_suggestions]

    def find_best_import(self, name: str) -> Optional[ImportMatch]:
        matches = self.find_matches([name])
        return matches[0] if matches else None

    def suggest_imports(self, names: Iterable[str]) -> List[str]:
        """``use`` lines for the names that have an exact match."""
        wanted = list(dict.fromkeys(names))
        if not wanted:
            return []
        lines: List[str] = []
        chosen: Set[str] = set()
        for match in self.find_matches(wanted):
            if not match.is_exact or match.item.name in chosen:
                continue
            chosen.add(match.item.name)
            lines.append(f"use {match.item.full_path};")
        for name in wanted:
            if name not in chosen:
                self.logger.debug("No import found for %s", name)
        return lines


def _local_kind(decl) -> Optional[str]:
    if isinstance(decl, StructInfo):
        return "struct"
    if isinstance(decl, EnumInfo):
        return "enum"
    if isinstance(decl, TraitInfo):
        return "trait"
    if isinstance(decl, FunctionInfo):
        return "function"
    return None
