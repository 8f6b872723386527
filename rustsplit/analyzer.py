"""Analysis pipeline: structural parse, semantics, impl context, imports."""

from __future__ import annotations

import logging
from typing import Optional

from .cache import AnalysisCache, cache_key
from .document import Document
from .impl_context import ImplContextDetector
from .models import AnalysisResult, CodeSpan
from .parser import StructuralParser, create_parser
from .semantics import SemanticAnalyzer


class RustCodeAnalyzer:
    """Produces an :class:`AnalysisResult` for a span of a document.

    Results are cached by ``(path, span text)``; a hit skips every stage.
    """

    def __init__(
        self,
        parser: Optional[StructuralParser] = None,
        cache: Optional[AnalysisCache] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.parser = parser or create_parser()
        self.semantics = SemanticAnalyzer()
        self.impl_detector = ImplContextDetector(self.parser)
        self.cache = cache
        self.logger = logger or logging.getLogger(__name__)
        self.last_from_cache = False

    def analyze(
        self,
        document: Document,
        span: CodeSpan,
        selection_offset: Optional[int] = None,
    ) -> AnalysisResult:
        """Analyze *span* of *document*.

        Args:
            document: The full source document.
            span: Text to extract.
            selection_offset: Offset used for impl-context detection;
                defaults to the start of the span.
        """
        key = cache_key(document.path, span.text)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                self.logger.info("Analysis cache hit for %s", document.path.name)
                self.last_from_cache = True
                return cached
        self.last_from_cache = False

        declarations = self.parser.parse_declarations(span.text)
        properties = self.semantics.analyze(span.text, declarations)
        if selection_offset is None:
            selection_offset = document.offset_at(span.start)
        context = self.impl_detector.detect(document.text, selection_offset)
        imports = self.parser.extract_imports(document.text, top_level_only=True)

        result = AnalysisResult(
            selected_code=span.text,
            used_types=properties.used_types,
            used_traits=properties.used_traits,
            functions=declarations.functions,
            structs=declarations.structs,
            enums=declarations.enums,
            traits=declarations.traits,
            implementations=declarations.implementations,
            top_level=declarations.top_level,
            imports=imports,
            visibility=properties.visibility,
            has_generic_params=properties.has_generics,
            is_inside_impl=context.is_inside_impl,
            impl_context=context.impl_info,
            source_path=str(document.path),
        )
        self.logger.debug(
            "Analyzed %s: %d functions, %d structs, %d enums, %d traits, %d impls, %d imports",
            document.path.name, len(result.functions), len(result.structs), len(result.enums),
            len(result.traits), len(result.implementations), len(result.imports),
        )
        if self.cache is not None:
            self.cache.put(key, result)
        return result
