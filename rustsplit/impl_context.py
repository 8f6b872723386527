"""Detect whether a selection sits inside an ``impl`` block."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .models import ImplementationInfo
from .parser import ItemSpan, StructuralParser, create_parser

logger = logging.getLogger(__name__)


@dataclass
class ImplContext:
    is_inside_impl: bool = False
    impl_info: Optional[ImplementationInfo] = None


class ImplContextDetector:
    """Finds the innermost impl block strictly enclosing a document offset."""

    def __init__(self, parser: Optional[StructuralParser] = None) -> None:
        self.parser = parser or create_parser()

    def detect(self, document_text: str, selection_offset: int) -> ImplContext:
        best: Optional[ItemSpan] = None
        stack = list(self.parser.scan_items(document_text))
        while stack:
            item = stack.pop()
            if item.kind == "impl" and item.start < selection_offset < item.end:
                if best is None or item.start > best.start:
                    best = item
            stack.extend(item.children)

        if best is None or not isinstance(best.declaration, ImplementationInfo):
            return ImplContext()

        found = best.declaration
        logger.debug("Selection at offset %s is inside %s", selection_offset, found.render_header())
        # Only the header is relevant to the extracted span, not sibling methods.
        return ImplContext(
            is_inside_impl=True,
            impl_info=ImplementationInfo(
                target_type=found.target_type,
                trait_name=found.trait_name,
                methods=[],
                header=found.header,
                has_generics=found.has_generics,
            ),
        )
