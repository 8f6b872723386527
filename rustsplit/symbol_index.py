"""Hierarchical symbol index for a document.

Editors and language servers can plug in their own provider; the default
one is built from the structural parser.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from .document import Document
from .models import TextRange
from .parser import ItemSpan, StructuralParser, create_parser

logger = logging.getLogger(__name__)


@dataclass
class SymbolNode:
    name: str
    kind: str
    range: TextRange
    children: List["SymbolNode"] = field(default_factory=list)


class SymbolIndexProvider(ABC):
    """Source of document symbols."""

    @abstractmethod
    async def document_symbols(self, document: Document) -> List[SymbolNode]:
        """Top-level symbols of *document* with nested children."""
        ...


class ParserSymbolIndex(SymbolIndexProvider):
    """Symbol index derived from parser item spans."""

    def __init__(self, parser: Optional[StructuralParser] = None) -> None:
        self.parser = parser or create_parser()

    async def document_symbols(self, document: Document) -> List[SymbolNode]:
        nodes = [self._to_node(document, item) for item in self.parser.scan_items(document.text)]
        logger.debug("Indexed %d top-level symbols in %s", len(nodes), document.path.name)
        return nodes

    def _to_node(self, document: Document, item: ItemSpan) -> SymbolNode:
        start = document.position_at(item.start)
        end = document.position_at(min(item.end + 1, len(document.text)))
        return SymbolNode(
            name=item.name,
            kind=item.kind,
            range=TextRange(start, end),
            children=[self._to_node(document, child) for child in item.children],
        )
