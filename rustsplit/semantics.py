"""Semantic properties of a span: referenced types, bound traits, generics."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from .lexer import find_matching, mask_literals, split_top_level
from .models import Declaration, DeclarationSet, ImplementationInfo, Visibility

logger = logging.getLogger(__name__)

STD_TYPES = frozenset({
    "Vec", "String", "HashMap", "HashSet", "Option", "Result", "Box",
    "Rc", "Arc", "Cell", "RefCell", "Mutex", "RwLock",
})

# Types every module sees without a `use`.
PRELUDE_TYPES = frozenset({"Vec", "String", "Option", "Result", "Box", "Self"})

# Prelude / derive traits that never need an import.
STD_TRAITS = frozenset({
    "Clone", "Copy", "Debug", "Display", "Default", "PartialEq", "Eq",
    "PartialOrd", "Ord", "Hash", "From", "Into", "Iterator",
})

_TYPE_AFTER_COLON = re.compile(r":\s*&?\s*(?:'[A-Za-z_]\w*\s+)?(?:mut\s+)?([A-Z][A-Za-z0-9_]*)")
_GENERIC_BOUND = re.compile(r"<[^<>]*?\b[A-Za-z_]\w*\s*:\s*([^<>]+?)>")
_PARAM_BOUND = re.compile(r"^\s*[A-Za-z_]\w*\s*:(?!:)\s*(.*)$", re.DOTALL)
_WHERE_CLAUSE = re.compile(r"\bwhere\b(.*?)(?:\{|;|$)", re.DOTALL)
_IMPL_FOR = re.compile(r"\bimpl\b(?:\s*<[^{]*?>)?\s+([A-Z][A-Za-z0-9_]*)(?:<[^{]*?>)?\s+for\b")
_IMPL_TRAIT = re.compile(r"(?:[:(,]|->)\s*impl\s+([A-Z][A-Za-z0-9_]*)")
_DYN_TRAIT = re.compile(r"\bdyn\s+([A-Z][A-Za-z0-9_]*)")
_TRAIT_NAME = re.compile(r"^\??\s*(?:for\s*<[^>]*>\s*)?([A-Za-z_][A-Za-z0-9_]*(?:::[A-Za-z_][A-Za-z0-9_]*)*)")
_TYPE_NAME = re.compile(r"\b[A-Z][A-Za-z0-9_]+")
_GENERIC_OPEN = re.compile(r"(?:\b[A-Za-z_]\w*|::)<")
_GENERIC_DECL = re.compile(r"\b(?:fn|struct|enum|union|trait|type)\s+[A-Za-z_]\w*\s*<|\bimpl\s*<")
_GENERIC_PARAM = re.compile(r"^\s*(?:const\s+)?([A-Za-z_]\w*)")
_ASSOC_BINDING = re.compile(r"\b([A-Za-z_]\w*)\s*=(?!=)")


@dataclass
class SemanticProperties:
    used_types: Set[str] = field(default_factory=set)
    used_traits: Set[str] = field(default_factory=set)
    has_generics: bool = False
    visibility: Visibility = Visibility.PRIVATE


class SemanticAnalyzer:
    """Derives type/trait usage from a span and its parsed declarations."""

    def analyze(self, code: str, declarations: DeclarationSet) -> SemanticProperties:
        masked = mask_literals(code)
        traits = self.find_used_traits(masked)
        properties = SemanticProperties(
            used_types=self.find_used_types(masked, declarations, traits),
            used_traits=traits,
            has_generics=self.has_generics(declarations),
            visibility=self.overall_visibility(declarations.top_level),
        )
        logger.debug(
            "Semantic pass: %d types, %d traits, visibility %s",
            len(properties.used_types), len(properties.used_traits), properties.visibility.value,
        )
        return properties

    def find_used_types(
        self,
        code: str,
        declarations: DeclarationSet,
        traits: Optional[Set[str]] = None,
    ) -> Set[str]:
        """Every type named in a field, a signature or a generic argument.

        Std containers, ``Self``, generic parameters of the span and the
        names in *traits* are left out. Types declared in the span are
        always included.
        """
        found: Set[str] = set()
        bindings: Set[str] = set()
        found.update(m.group(1) for m in _TYPE_AFTER_COLON.finditer(code))
        for function in declarations.functions:
            found.update(function.used_external_types)
        for struct in declarations.structs:
            for struct_field in struct.fields:
                found.update(_TYPE_NAME.findall(struct_field.type))
        for arguments in _generic_arguments(code):
            bindings.update(_ASSOC_BINDING.findall(arguments))
            found.update(_TYPE_NAME.findall(arguments))

        excluded = set(STD_TYPES) | {"Self"} | bindings | _generic_parameters(code) | set(traits or ())
        types = {name for name in found if name not in excluded}
        types.update(s.name for s in declarations.structs)
        types.update(e.name for e in declarations.enums)
        return types

    def find_used_traits(self, code: str) -> Set[str]:
        traits: Set[str] = set()
        for match in _GENERIC_BOUND.finditer(code):
            for part in split_top_level(match.group(1)):
                param = _PARAM_BOUND.match(part)
                traits.update(_bound_names(param.group(1) if param else part))
        for match in _WHERE_CLAUSE.finditer(code):
            for predicate in split_top_level(match.group(1)):
                if ":" in predicate:
                    traits.update(_bound_names(predicate.split(":", 1)[1]))
        for pattern in (_IMPL_FOR, _IMPL_TRAIT, _DYN_TRAIT):
            traits.update(m.group(1) for m in pattern.finditer(code))
        return {t for t in traits if t and not t.startswith("'")}

    def has_generics(self, declarations: DeclarationSet) -> bool:
        items: List[Declaration] = []
        items.extend(declarations.functions)
        items.extend(declarations.structs)
        items.extend(declarations.enums)
        items.extend(declarations.traits)
        items.extend(declarations.implementations)
        return any(getattr(item, "has_generics", False) for item in items)

    def overall_visibility(self, top_level: Iterable[Declaration]) -> Visibility:
        """Most public visibility among top-level declarations."""
        best = Visibility.PRIVATE
        for decl in top_level:
            if isinstance(decl, ImplementationInfo):
                continue
            visibility = getattr(decl, "visibility", Visibility.PRIVATE)
            if visibility.rank > best.rank:
                best = visibility
        return best


def _bound_names(bounds: str) -> Set[str]:
    names = set()
    for bound in split_top_level(bounds, "+"):
        bound = bound.strip()
        if not bound or bound.startswith("'"):
            continue
        match = _TRAIT_NAME.match(bound)
        if match:
            names.add(match.group(1).split("::")[-1])
    return names


def _generic_arguments(code: str) -> List[str]:
    """Text inside every ``Name<...>`` / ``::<...>`` in *code*."""
    arguments = []
    for match in _GENERIC_OPEN.finditer(code):
        open_index = match.end() - 1
        close = find_matching(code, open_index)
        if close < len(code):
            arguments.append(code[open_index + 1:close])
    return arguments


def _generic_parameters(code: str) -> Set[str]:
    """Names introduced by ``fn f<T>``, ``struct S<T>``, ``impl<T>`` and friends."""
    names: Set[str] = set()
    for match in _GENERIC_DECL.finditer(code):
        open_index = match.end() - 1
        close = find_matching(code, open_index)
        for part in split_top_level(code[open_index + 1:close]):
            param = _GENERIC_PARAM.match(part)
            if param:
                names.add(param.group(1))
    return names
