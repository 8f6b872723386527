"""Decide which of the source file's imports the extracted module needs.

Two passes, in order:

1. **Usage filtering** drops every ``use`` that the extracted code never
   references. Relative globs (``use super::*;``) are always kept.
2. **Absolutization** rewrites ``super::`` and ``self::`` paths to
   ``crate::`` form, because the new module lives at a different depth of
   the module tree than the file the code came from.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional

from .config import INDEX_FILE_NAMES, SOURCE_ROOT_NAME
from .lexer import split_path
from .models import AnalysisResult, ImportStatement
from .parser import parse_import
from .semantics import PRELUDE_TYPES, STD_TRAITS, STD_TYPES


def module_path_from_file(workspace_root: Path, file_path: Path) -> List[str]:
    """Module path of a source file: ``src/models/user.rs`` -> ``[models, user]``.

    A leading ``src`` directory is dropped and index files (``mod.rs``,
    ``lib.rs``, ``main.rs``) contribute no segment of their own.
    """
    try:
        relative = Path(file_path).resolve().relative_to(Path(workspace_root).resolve())
    except ValueError:
        relative = Path(file_path)
    parts = list(relative.parts)
    if parts and parts[0] == SOURCE_ROOT_NAME:
        parts = parts[1:]
    if not parts:
        return []
    last = parts.pop()
    if last not in INDEX_FILE_NAMES:
        parts.append(last[:-3] if last.endswith(".rs") else last)
    return parts


def word_occurs(identifier: str, code: str) -> bool:
    return bool(re.search(rf"\b{re.escape(identifier)}\b", code))


def bare_name_occurs(identifier: str, code: str) -> bool:
    """True when *identifier* appears without a ``path::`` qualifier."""
    return bool(re.search(rf"(?<!::)\b{re.escape(identifier)}\b", code))


class ImportResolver:
    """Usage filtering and path absolutization for ``use`` declarations."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Usage filtering
    # ------------------------------------------------------------------

    def is_used(self, statement: ImportStatement, code: str) -> bool:
        if not statement.bound_identifiers and not statement.is_wildcard:
            # Nothing to match against (`use Trait as _;` and friends).
            return True
        if statement.is_external and statement.root_segment:
            if re.search(rf"\b{re.escape(statement.root_segment)}::", code):
                return True
        if any(word_occurs(name, code) for name in statement.bound_identifiers):
            return True
        if statement.is_wildcard:
            if not statement.namespace:
                # `super::*`, `self::*`, `crate::*`: the glob's names are unknown here.
                return True
            return word_occurs(statement.namespace, code)
        return False

    def filter_used(self, imports: Iterable[ImportStatement], code: str) -> List[ImportStatement]:
        used = []
        for statement in imports:
            if self.is_used(statement, code):
                used.append(statement)
            else:
                self.logger.debug("Dropping unused import %s", statement.path)
        return used

    # ------------------------------------------------------------------
    # Absolutization
    # ------------------------------------------------------------------

    def absolutize(self, statement: ImportStatement, module_path: List[str]) -> ImportStatement:
        """Rewrite a ``super::``/``self::`` import relative to *module_path*.

        Imports that climb above the crate root are returned unchanged.
        """
        if statement.root_segment not in ("super", "self"):
            return statement
        segments = split_path(statement.path)
        base = list(module_path)
        index = 0
        if statement.root_segment == "self":
            index = 1
        while index < len(segments) and segments[index] == "super":
            if not base:
                self.logger.warning(
                    "Import %s climbs above the crate root; leaving it as is", statement.path,
                )
                return statement
            base.pop()
            index += 1
        rest = segments[index:]
        if not rest:
            return statement
        path = "::".join(["crate"] + base + rest)
        return parse_import(path, is_public=statement.is_public)

    # ------------------------------------------------------------------
    # Whole pipeline
    # ------------------------------------------------------------------

    def resolve(
        self,
        analysis: AnalysisResult,
        module_code: str,
        source_module_path: List[str],
        suggestions: Optional[Iterable[str]] = None,
    ) -> List[ImportStatement]:
        """Imports for the new module, in a stable order without duplicates.

        *module_code* is the body that will be written (including any
        synthetic impl header); usage is checked against it.
        """
        resolved: List[ImportStatement] = []
        seen = set()

        def add(statement: ImportStatement) -> None:
            if statement.path not in seen:
                seen.add(statement.path)
                resolved.append(statement)

        for statement in self.filter_used(analysis.imports, module_code):
            add(self.absolutize(statement, source_module_path))

        for suggestion in suggestions or []:
            statement = self.parse_suggestion(suggestion)
            if statement is not None and self.is_used(statement, module_code):
                add(self.absolutize(statement, source_module_path))

        for statement in self.synthesize(analysis, resolved):
            add(statement)
        return resolved

    def unresolved_types(
        self,
        analysis: AnalysisResult,
        module_code: str,
        extra: Optional[Iterable[str]] = None,
        suggestions: Optional[Iterable[str]] = None,
    ) -> List[str]:
        """Type names *module_code* uses bare that nothing brings into scope.

        A name is covered by an import of the source file, by a
        *suggestions* line, by a declaration in the span, by the prelude or
        by the enclosing impl (which :meth:`synthesize` imports). *extra*
        adds names reported elsewhere, such as by the compiler bridge.
        """
        covered = set(PRELUDE_TYPES) | analysis.defined_type_names()
        for statement in analysis.imports:
            covered.update(statement.bound_identifiers)
        for suggestion in suggestions or []:
            statement = self.parse_suggestion(suggestion)
            if statement is not None:
                covered.update(statement.bound_identifiers)
        if analysis.is_inside_impl and analysis.impl_context is not None:
            covered.add(analysis.impl_context.target_type)
            if analysis.impl_context.trait_name:
                covered.add(analysis.impl_context.trait_name)

        names = set(analysis.used_types) | set(extra or [])
        return sorted(
            name for name in names
            if name not in covered and bare_name_occurs(name, module_code)
        )

    def synthesize(
        self,
        analysis: AnalysisResult,
        resolved: List[ImportStatement],
    ) -> List[ImportStatement]:
        """``super::`` imports for the impl target/trait the new module needs."""
        if not analysis.is_inside_impl or analysis.impl_context is None:
            return []
        covered = set()
        for statement in resolved:
            covered.update(statement.bound_identifiers)
            covered.add(statement.root_segment)
        defined = analysis.defined_type_names()

        wanted = [analysis.impl_context.target_type]
        if analysis.impl_context.trait_name:
            wanted.append(analysis.impl_context.trait_name)

        added = []
        for name in wanted:
            if not name or name in covered or name in defined:
                continue
            if name in STD_TYPES or name in STD_TRAITS:
                continue
            self.logger.debug("Adding import for enclosing impl item %s", name)
            added.append(parse_import(f"super::{name}"))
        return added

    @staticmethod
    def parse_suggestion(suggestion: str) -> Optional[ImportStatement]:
        text = suggestion.strip()
        if text.startswith("use "):
            text = text[4:]
        text = text.rstrip(";").strip()
        if not text:
            return None
        return parse_import(text)
