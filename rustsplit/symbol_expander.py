"""Grow a raw selection to whole declarations.

A selection that covers part of a declaration is widened to every
declaration it overlaps (and their ancestors), and then upward over the
attributes and doc comments attached to the first one.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .document import Document
from .models import CodeSpan, Position, TextRange
from .symbol_index import ParserSymbolIndex, SymbolIndexProvider, SymbolNode

ATTRIBUTE_PREFIXES = ("#[", "///")


class SymbolExpander:
    """Expands selections using a :class:`SymbolIndexProvider`."""

    def __init__(
        self,
        index: Optional[SymbolIndexProvider] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.index = index or ParserSymbolIndex()
        self.logger = logger or logging.getLogger(__name__)

    async def expand(
        self,
        document: Document,
        selection: TextRange,
        include_enclosing: bool = True,
    ) -> Optional[CodeSpan]:
        """Return the expanded span, or ``None`` if no declaration overlaps.

        Overlap is decided on whole lines. The result starts at column 0 of
        the first attribute line and ends at the end of the last line.

        With ``include_enclosing=False`` a declaration that merely encloses
        the selection (an ``impl`` around a selected method) is not added,
        only its overlapping members are.
        """
        symbols = await self.index.document_symbols(document)
        if not symbols:
            self.logger.debug("No symbols in %s", document.path)
            return None

        overlapping = self.find_overlapping(symbols, selection, include_enclosing)
        if not overlapping:
            self.logger.debug("Selection %s overlaps no declaration", selection)
            return None

        start_line = min([selection.start.line] + [s.range.start.line for s in overlapping])
        end_line = max([selection.end.line] + [s.range.end.line for s in overlapping])
        start_line = self.find_attribute_start(document, start_line)
        expanded = document.lines_range(start_line, end_line)
        self.logger.info(
            "Expanded selection %s to lines %s-%s (%d symbols)",
            selection, start_line + 1, end_line + 1, len(overlapping),
        )
        return document.span(expanded)

    async def find_symbol(self, document: Document, name: str) -> Optional[CodeSpan]:
        """Span of the first declaration called *name* (depth-first), attributes included."""
        symbols = await self.index.document_symbols(document)
        node = _find_by_name(symbols, name)
        if node is None:
            return None
        start_line = self.find_attribute_start(document, node.range.start.line)
        span_range = TextRange(Position(start_line, 0), node.range.end)
        return document.span(span_range)

    def find_overlapping(
        self,
        symbols: List[SymbolNode],
        selection: TextRange,
        include_enclosing: bool = True,
    ) -> List[SymbolNode]:
        """Symbols overlapping *selection*; each overlapping child is preceded by its parent."""
        found: List[SymbolNode] = []
        for symbol in symbols:
            if not _overlaps(symbol.range, selection):
                continue
            children = self.find_overlapping(symbol.children, selection, include_enclosing)
            if include_enclosing or not (children and _encloses(symbol.range, selection)):
                found.append(symbol)
            found.extend(children)
        return found

    def find_attribute_start(self, document: Document, line: int) -> int:
        """Walk up from *line* over attribute, doc-comment and blank lines."""
        current = line - 1
        while current >= 0:
            text = document.line_text(current).strip()
            if text and not text.startswith(ATTRIBUTE_PREFIXES):
                break
            current -= 1
        start = current + 1
        while start < line and not document.line_text(start).strip():
            start += 1
        return start


def _overlaps(symbol_range: TextRange, selection: TextRange) -> bool:
    return not (
        symbol_range.end.line < selection.start.line
        or symbol_range.start.line > selection.end.line
    )


def _encloses(symbol_range: TextRange, selection: TextRange) -> bool:
    return symbol_range.start.line < selection.start.line and symbol_range.end.line > selection.end.line


def _find_by_name(symbols: List[SymbolNode], name: str) -> Optional[SymbolNode]:
    for symbol in symbols:
        if symbol.name == name:
            return symbol
        child = _find_by_name(symbol.children, name)
        if child is not None:
            return child
    return None
