"""Structural parser for Rust source spans.

Two implementations share the :class:`StructuralParser` interface:

* :class:`TreeSitterParser` reads items off a ``tree-sitter-rust`` syntax
  tree. It is used whenever the grammar is installed.
* :class:`RustParser` recognises functions, structs, enums, traits,
  ``impl`` blocks and ``use`` declarations without a full grammar. Headers
  are matched with regular expressions on literal-masked text; bodies are
  delimited by bracket matching, so nested generics and multi-line
  signatures are handled.

The pattern parser is deliberately tolerant: unrecognised text is skipped,
and partial or unbalanced input yields whatever declarations could be
found. The tree-sitter parser hands such input to it.
"""

from __future__ import annotations

import importlib
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .lexer import (
    brace_depths,
    find_block_end,
    find_matching,
    mask_literals,
    normalize_whitespace,
    previous_token_char,
    split_path,
    split_top_level,
    strip_attributes,
)
from .models import (
    Declaration,
    DeclarationSet,
    EnumInfo,
    FieldInfo,
    FunctionInfo,
    ImplementationInfo,
    ImportStatement,
    RELATIVE_MARKERS,
    StructInfo,
    TraitInfo,
    Visibility,
)

logger = logging.getLogger(__name__)

_VIS = r"(?P<vis>\bpub\b(?:\s*\([^)]*\))?\s*)?"
_IDENT = r"(?P<name>[A-Za-z_][A-Za-z0-9_]*)"

_FN_RE = re.compile(
    _VIS + r"(?:(?:const|async|unsafe|default|extern)\s+)*\bfn\s+" + _IDENT
)
_STRUCT_RE = re.compile(_VIS + r"\b(?:struct|union)\s+" + _IDENT)
_ENUM_RE = re.compile(_VIS + r"\benum\s+" + _IDENT)
_TRAIT_RE = re.compile(_VIS + r"(?:unsafe\s+)?(?:auto\s+)?\btrait\s+" + _IDENT)
_IMPL_RE = re.compile(r"(?:\bunsafe\s+)?\bimpl\b")
_MOD_RE = re.compile(_VIS + r"\bmod\s+" + _IDENT + r"\s*(?P<term>[{;])")
_CONST_RE = re.compile(
    _VIS + r"\b(?P<kind>const|static|type)\s+(?:mut\s+)?" + _IDENT
)
_MACRO_RULES_RE = re.compile(r"\bmacro_rules!\s*" + _IDENT)
_USE_RE = re.compile(
    r"(?P<vis>\bpub\b(?:\s*\([^)]*\))?\s+)?\buse\s+(?P<path>[^;]+);"
)

_FIELD_RE = re.compile(
    r"^(?P<vis>pub(?:\s*\([^)]*\))?\s+)?(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*:\s*(?P<ty>.+)$",
    re.DOTALL,
)
_TUPLE_FIELD_VIS_RE = re.compile(r"^(?P<vis>pub(?:\s*\([^)]*\))?\s+)?(?P<ty>.+)$", re.DOTALL)
_VARIANT_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)")
_TYPE_NAME_RE = re.compile(r"\b[A-Z][A-Za-z0-9_]+")
_GENERIC_PARAM_RE = re.compile(r"(?:^|,)\s*(?:const\s+)?([A-Za-z_][A-Za-z0-9_]*)")
_ITEM_BOUNDARY = {"", "}", ";", "{", "]"}


# ===================================================================
# Item spans
# ===================================================================

@dataclass
class ItemSpan:
    """Offsets of one item in the parsed text.

    ``start`` is the first character of the item header, ``end`` the index
    of its closing ``}`` or ``;`` (inclusive).
    """
    kind: str
    name: str
    start: int
    end: int
    declaration: Optional[Declaration] = None
    children: List["ItemSpan"] = field(default_factory=list)

    def contains(self, other: "ItemSpan") -> bool:
        return self.start < other.start and other.end <= self.end


# ===================================================================
# Abstract Parser Interface
# ===================================================================

class StructuralParser(ABC):
    """Abstract base class for Rust structural parsers."""

    @abstractmethod
    def scan_items(self, code: str) -> List[ItemSpan]:
        """Return every recognised item as a nested tree of spans."""
        ...

    @abstractmethod
    def extract_imports(self, code: str, top_level_only: bool = False) -> List[ImportStatement]:
        """Return the ``use`` declarations found in *code*."""
        ...

    def parse(self, code: str) -> List[Declaration]:
        """Top-level declarations of *code*, in source order."""
        return [item.declaration for item in self.scan_items(code) if item.declaration is not None]

    def parse_declarations(self, code: str) -> DeclarationSet:
        """All declarations of *code*, grouped by kind.

        Functions include methods of ``impl`` and ``trait`` blocks.
        """
        result = DeclarationSet(top_level=self.parse(code))
        for item in _walk(self.scan_items(code)):
            decl = item.declaration
            if isinstance(decl, FunctionInfo):
                result.functions.append(decl)
            elif isinstance(decl, StructInfo):
                result.structs.append(decl)
            elif isinstance(decl, EnumInfo):
                result.enums.append(decl)
            elif isinstance(decl, TraitInfo):
                result.traits.append(decl)
            elif isinstance(decl, ImplementationInfo):
                result.implementations.append(decl)
        return result

    def parse_functions(self, code: str) -> List[FunctionInfo]:
        return self.parse_declarations(code).functions

    def parse_structs(self, code: str) -> List[StructInfo]:
        return self.parse_declarations(code).structs

    def parse_enums(self, code: str) -> List[EnumInfo]:
        return self.parse_declarations(code).enums

    def parse_traits(self, code: str) -> List[TraitInfo]:
        return self.parse_declarations(code).traits

    def parse_implementations(self, code: str) -> List[ImplementationInfo]:
        return self.parse_declarations(code).implementations


def _walk(items: List[ItemSpan]):
    for item in items:
        yield item
        yield from _walk(item.children)


# ===================================================================
# Tree-sitter Parser (Primary)
# ===================================================================

_TS_ITEM_KINDS: Dict[str, str] = {
    "function_item": "function",
    "function_signature_item": "function",
    "struct_item": "struct",
    "union_item": "struct",
    "enum_item": "enum",
    "trait_item": "trait",
    "impl_item": "impl",
    "mod_item": "module",
    "const_item": "constant",
    "static_item": "static",
    "type_item": "type_alias",
    "associated_type": "type_alias",
    "macro_definition": "macro",
}


class TreeSitterParser(StructuralParser):
    """Rust parser built on the ``tree-sitter-rust`` grammar.

    Item boundaries and nesting come straight from the concrete syntax
    tree, so string literals, comments and ``impl Trait`` in type position
    need no special casing. Text the grammar cannot parse cleanly (a
    half-selected block, unbalanced braces) is handed to the
    :class:`RustParser` fallback, as is everything when the grammar
    package is not installed.
    """

    GRAMMAR_MODULE = "tree_sitter_rust"

    def __init__(self, fallback: Optional[StructuralParser] = None) -> None:
        self.fallback = fallback or RustParser()
        self._parser: Any = None
        self._init_parser()

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def _init_parser(self) -> None:
        try:
            import tree_sitter  # type: ignore[import-untyped]  # noqa: F401
        except ImportError:
            logger.warning(
                "tree-sitter is not installed -- "
                "using the pattern-based parser. "
                "Install with: pip install tree-sitter tree-sitter-rust"
            )
            return

        from tree_sitter import Language, Parser as TSParser  # type: ignore[import-untyped]

        try:
            module = importlib.import_module(self.GRAMMAR_MODULE)
            self._parser = TSParser(Language(module.language()))
            logger.debug("Loaded tree-sitter grammar for rust")
        except ImportError:
            logger.warning(
                "Grammar package '%s' not installed. Install with: pip install %s",
                self.GRAMMAR_MODULE, self.GRAMMAR_MODULE.replace("_", "-"),
            )
        except Exception as exc:
            logger.warning("Could not load tree-sitter grammar for rust: %s", exc)

    @property
    def available(self) -> bool:
        return self._parser is not None

    def _tree(self, code: str) -> Any:
        if self._parser is None:
            return None
        tree = self._parser.parse(code.encode("utf-8"))
        if tree.root_node.has_error:
            logger.debug("Syntax errors in %d chars of input; using the pattern parser", len(code))
            return None
        return tree

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def scan_items(self, code: str) -> List[ItemSpan]:
        tree = self._tree(code)
        if tree is None:
            return self.fallback.scan_items(code)
        to_char = _char_offsets(code)
        flat: List[ItemSpan] = []
        for node in _ts_walk(tree.root_node):
            kind = _TS_ITEM_KINDS.get(node.type)
            if kind is None:
                continue
            item = self._item(node, kind, code, to_char)
            if item is not None:
                flat.append(item)
        return _nest(flat)

    def _item(self, node: Any, kind: str, code: str, to_char: Callable[[int], int]) -> Optional[ItemSpan]:
        start = to_char(node.start_byte)
        end = to_char(node.end_byte) - 1
        if kind == "impl":
            info = self._impl(node, code, to_char)
            if info is None:
                return None
            return ItemSpan("impl", info.render_header(), start, end, info)
        if kind == "function":
            declaration: Optional[Declaration] = self._function(node, code, to_char)
        elif kind == "struct":
            declaration = self._struct(node, code, to_char)
        elif kind == "enum":
            declaration = self._enum(node, code, to_char)
        elif kind == "trait":
            declaration = TraitInfo(
                name=_field_text(node, "name", code, to_char),
                visibility=Visibility.from_modifier(_visibility_text(node, code, to_char)),
                has_generics=node.child_by_field_name("type_parameters") is not None,
            )
        else:
            name = _field_text(node, "name", code, to_char)
            return ItemSpan(kind, name, start, end) if name else None
        return ItemSpan(kind, declaration.name, start, end, declaration)

    def _function(self, node: Any, code: str, to_char: Callable[[int], int]) -> FunctionInfo:
        start = to_char(node.start_byte)
        body = node.child_by_field_name("body")
        signature_end = to_char(body.start_byte if body is not None else node.end_byte)
        signature = normalize_whitespace(mask_literals(code[start:signature_end])).rstrip(";").rstrip()
        generics = _field_text(node, "type_parameters", code, to_char)[1:-1]
        visibility = Visibility.from_modifier(_visibility_text(node, code, to_char))
        return FunctionInfo(
            name=_field_text(node, "name", code, to_char),
            signature=signature,
            is_public=visibility is Visibility.PUBLIC,
            has_generics=bool(generics.strip()),
            used_external_types=_external_types(signature, generics),
            visibility=visibility,
        )

    def _struct(self, node: Any, code: str, to_char: Callable[[int], int]) -> StructInfo:
        fields: List[FieldInfo] = []
        body = node.child_by_field_name("body")
        if body is not None:
            inner = code[to_char(body.start_byte) + 1:to_char(body.end_byte) - 1]
            if body.type == "ordered_field_declaration_list":
                fields = _tuple_fields(inner)
            else:
                fields = _named_fields(inner)
        return StructInfo(
            name=_field_text(node, "name", code, to_char),
            visibility=Visibility.from_modifier(_visibility_text(node, code, to_char)),
            has_generics=node.child_by_field_name("type_parameters") is not None,
            fields=fields,
        )

    def _enum(self, node: Any, code: str, to_char: Callable[[int], int]) -> EnumInfo:
        variants: List[str] = []
        body = node.child_by_field_name("body")
        for child in body.named_children if body is not None else []:
            if child.type == "enum_variant":
                variants.append(_field_text(child, "name", code, to_char))
        return EnumInfo(
            name=_field_text(node, "name", code, to_char),
            visibility=Visibility.from_modifier(_visibility_text(node, code, to_char)),
            has_generics=node.child_by_field_name("type_parameters") is not None,
            variants=[v for v in variants if v],
        )

    def _impl(self, node: Any, code: str, to_char: Callable[[int], int]) -> Optional[ImplementationInfo]:
        body = node.child_by_field_name("body")
        if body is None:
            return None
        header = normalize_whitespace(mask_literals(code[to_char(node.start_byte):to_char(body.start_byte)]))
        info = parse_impl_header(header)
        if info is None:
            logger.debug("Skipping unrecognised impl header %r", header)
            return None
        info.methods = [
            self._function(child, code, to_char)
            for child in body.named_children
            if child.type in ("function_item", "function_signature_item")
        ]
        return info

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    def extract_imports(self, code: str, top_level_only: bool = False) -> List[ImportStatement]:
        tree = self._tree(code)
        if tree is None:
            return self.fallback.extract_imports(code, top_level_only)
        to_char = _char_offsets(code)
        imports: List[ImportStatement] = []
        for node in _ts_walk(tree.root_node):
            if node.type != "use_declaration":
                continue
            if top_level_only and node.parent is not None and node.parent.type != "source_file":
                continue
            path = _normalize_use_path(_field_text(node, "argument", code, to_char))
            if not path:
                continue
            is_public = _visibility_text(node, code, to_char) is not None
            imports.append(parse_import(path, is_public=is_public))
        return imports


def _ts_walk(root: Any) -> Iterator[Any]:
    """Named nodes under *root*, in source order."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.named_children))


def _char_offsets(code: str) -> Callable[[int], int]:
    """Map tree-sitter byte offsets onto indices of *code*."""
    if code.isascii():
        return lambda offset: offset
    table: List[int] = []
    for index, char in enumerate(code):
        table.extend([index] * len(char.encode("utf-8")))
    table.append(len(code))
    return lambda offset: table[min(offset, len(table) - 1)]


def _field_text(node: Any, field_name: str, code: str, to_char: Callable[[int], int]) -> str:
    child = node.child_by_field_name(field_name)
    if child is None:
        return ""
    return code[to_char(child.start_byte):to_char(child.end_byte)]


def _visibility_text(node: Any, code: str, to_char: Callable[[int], int]) -> Optional[str]:
    for child in node.children:
        if child.type == "visibility_modifier":
            return code[to_char(child.start_byte):to_char(child.end_byte)]
    return None


# ===================================================================
# Regex-based Rust parser
# ===================================================================

class RustParser(StructuralParser):
    """Header-matching Rust parser that never raises on malformed input."""

    def scan_items(self, code: str) -> List[ItemSpan]:
        masked = mask_literals(code)
        flat: List[ItemSpan] = []
        flat.extend(self._scan_functions(code, masked))
        flat.extend(self._scan_structs(code, masked))
        flat.extend(self._scan_enums(code, masked))
        flat.extend(self._scan_traits(masked))
        flat.extend(self._scan_impls(code, masked))
        flat.extend(self._scan_modules(masked))
        flat.extend(self._scan_constants(masked))
        flat.extend(self._scan_macros(masked))
        return _nest(flat)

    # ------------------------------------------------------------------
    # Functions
    # ------------------------------------------------------------------

    def _scan_functions(self, code: str, masked: str) -> List[ItemSpan]:
        items: List[ItemSpan] = []
        for match in _FN_RE.finditer(masked):
            pos = _skip_ws(masked, match.end())
            generics = ""
            if pos < len(masked) and masked[pos] == "<":
                close = find_matching(masked, pos)
                generics = masked[pos + 1:close]
                pos = _skip_ws(masked, close + 1)
            if pos >= len(masked) or masked[pos] != "(":
                continue
            params_end = find_matching(masked, pos)
            terminator = _find_first(masked, params_end + 1, "{;")
            signature = normalize_whitespace(masked[match.start():terminator])
            if terminator < len(masked) and masked[terminator] == "{":
                end = find_matching(masked, terminator)
            else:
                end = terminator
            visibility = Visibility.from_modifier(match.group("vis"))
            info = FunctionInfo(
                name=match.group("name"),
                signature=signature,
                is_public=visibility is Visibility.PUBLIC,
                has_generics=bool(generics.strip()),
                used_external_types=_external_types(signature, generics),
                visibility=visibility,
            )
            items.append(ItemSpan("function", info.name, match.start(), end, info))
        return items

    # ------------------------------------------------------------------
    # Data types
    # ------------------------------------------------------------------

    def _scan_structs(self, code: str, masked: str) -> List[ItemSpan]:
        items: List[ItemSpan] = []
        for match in _STRUCT_RE.finditer(masked):
            pos, has_generics = _skip_generics(masked, match.end())
            body_start = _find_first(masked, pos, "{(;")
            fields: List[FieldInfo] = []
            if body_start >= len(masked):
                end = len(masked)
            elif masked[body_start] == "{":
                end = find_matching(masked, body_start)
                fields = _named_fields(code[body_start + 1:end])
            elif masked[body_start] == "(":
                close = find_matching(masked, body_start)
                fields = _tuple_fields(code[body_start + 1:close])
                end = _find_first(masked, close + 1, ";")
            else:
                end = body_start
            info = StructInfo(
                name=match.group("name"),
                visibility=Visibility.from_modifier(match.group("vis")),
                has_generics=has_generics,
                fields=fields,
            )
            items.append(ItemSpan("struct", info.name, match.start(), end, info))
        return items

    def _scan_enums(self, code: str, masked: str) -> List[ItemSpan]:
        items: List[ItemSpan] = []
        for match in _ENUM_RE.finditer(masked):
            pos, has_generics = _skip_generics(masked, match.end())
            brace = _find_first(masked, pos, "{;")
            if brace >= len(masked) or masked[brace] != "{":
                continue
            end = find_matching(masked, brace)
            variants = []
            for part in split_top_level(code[brace + 1:end]):
                variant = _VARIANT_RE.match(strip_attributes(part))
                if variant:
                    variants.append(variant.group(1))
            info = EnumInfo(
                name=match.group("name"),
                visibility=Visibility.from_modifier(match.group("vis")),
                has_generics=has_generics,
                variants=variants,
            )
            items.append(ItemSpan("enum", info.name, match.start(), end, info))
        return items

    def _scan_traits(self, masked: str) -> List[ItemSpan]:
        items: List[ItemSpan] = []
        for match in _TRAIT_RE.finditer(masked):
            pos, has_generics = _skip_generics(masked, match.end())
            terminator = _find_first(masked, pos, "{;")
            if terminator < len(masked) and masked[terminator] == "{":
                end = find_matching(masked, terminator)
            else:
                end = terminator
            info = TraitInfo(
                name=match.group("name"),
                visibility=Visibility.from_modifier(match.group("vis")),
                has_generics=has_generics,
            )
            items.append(ItemSpan("trait", info.name, match.start(), end, info))
        return items

    # ------------------------------------------------------------------
    # impl blocks
    # ------------------------------------------------------------------

    def _scan_impls(self, code: str, masked: str) -> List[ItemSpan]:
        items: List[ItemSpan] = []
        for match in _IMPL_RE.finditer(masked):
            # `impl Trait` in argument or return position is not an item.
            if previous_token_char(masked, match.start()) not in _ITEM_BOUNDARY:
                continue
            brace = _find_first(masked, match.end(), "{;")
            if brace >= len(masked) or masked[brace] != "{":
                continue
            header = normalize_whitespace(masked[match.start():brace])
            end = find_matching(masked, brace)
            info = parse_impl_header(header)
            if info is None:
                logger.debug("Skipping unrecognised impl header %r", header)
                continue
            info.methods = [
                item.declaration
                for item in self._scan_functions(code[brace + 1:end], masked[brace + 1:end])
                if isinstance(item.declaration, FunctionInfo)
            ]
            label = info.render_header()
            items.append(ItemSpan("impl", label, match.start(), end, info))
        return items

    # ------------------------------------------------------------------
    # Items that only matter for the symbol index
    # ------------------------------------------------------------------

    def _scan_modules(self, masked: str) -> List[ItemSpan]:
        items = []
        for match in _MOD_RE.finditer(masked):
            if match.group("term") == "{":
                end = find_matching(masked, match.end() - 1)
            else:
                end = match.end() - 1
            items.append(ItemSpan("module", match.group("name"), match.start(), end))
        return items

    def _scan_constants(self, masked: str) -> List[ItemSpan]:
        items = []
        for match in _CONST_RE.finditer(masked):
            # Skips `const fn`, `const N: usize` generics and `&'static`.
            if previous_token_char(masked, match.start()) not in _ITEM_BOUNDARY:
                continue
            if match.group("kind") == "const" and re.match(r"\s*fn\b", masked[match.end("kind"):]):
                continue
            end = _find_first(masked, match.end(), ";")
            kind = {"const": "constant", "static": "static", "type": "type_alias"}[match.group("kind")]
            items.append(ItemSpan(kind, match.group("name"), match.start(), end))
        return items

    def _scan_macros(self, masked: str) -> List[ItemSpan]:
        items = []
        for match in _MACRO_RULES_RE.finditer(masked):
            end = find_block_end(masked, match.end())
            items.append(ItemSpan("macro", match.group("name"), match.start(), end))
        return items

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    def extract_imports(self, code: str, top_level_only: bool = False) -> List[ImportStatement]:
        masked = mask_literals(code)
        matches = list(_USE_RE.finditer(masked))
        depths = brace_depths(masked, [m.start() for m in matches])
        imports: List[ImportStatement] = []
        for match, depth in zip(matches, depths):
            if top_level_only and depth > 0:
                continue
            path = _normalize_use_path(match.group("path"))
            if not path:
                continue
            imports.append(parse_import(path, is_public=bool(match.group("vis"))))
        return imports


def create_parser() -> StructuralParser:
    """The tree-sitter parser when its grammar loads, else the pattern parser."""
    ts = TreeSitterParser()
    if ts.available:
        logger.debug("Using tree-sitter parser")
        return ts
    logger.info("Using pattern-based parser (tree-sitter-rust unavailable)")
    return ts.fallback


# ===================================================================
# Helpers
# ===================================================================

def parse_impl_header(header: str) -> Optional[ImplementationInfo]:
    """Parse ``impl<T: X> Trait<T> for Type<T> where ...`` into an info record."""
    masked = header
    pos = masked.index("impl") + len("impl")
    pos = _skip_ws(masked, pos)
    has_generics = False
    if pos < len(masked) and masked[pos] == "<":
        close = find_matching(masked, pos)
        has_generics = True
        pos = close + 1
    core = masked[pos:]
    core = _strip_where(core).strip()
    if not core:
        return None
    trait_part, target_part = _split_for(core)
    target_type = base_type_name(target_part)
    if not target_type:
        return None
    trait_name = base_type_name(trait_part.lstrip("!").strip()) if trait_part else None
    return ImplementationInfo(
        target_type=target_type,
        trait_name=trait_name,
        methods=[],
        header=header,
        has_generics=has_generics,
    )


def base_type_name(type_text: str) -> str:
    """``&'a mut fmt::Display<T>`` -> ``Display``."""
    text = type_text.strip()
    text = re.sub(r"^(?:&\s*(?:'[A-Za-z_]\w*\s*)?(?:mut\s+)?|dyn\s+|\*(?:const|mut)\s+)+", "", text)
    angle = text.find("<")
    if angle != -1:
        text = text[:angle]
    segments = [s for s in text.split("::") if s.strip()]
    if not segments:
        return ""
    match = re.match(r"[A-Za-z_][A-Za-z0-9_]*", segments[-1].strip())
    return match.group(0) if match else ""


def parse_import(path: str, is_public: bool = False) -> ImportStatement:
    """Build an :class:`ImportStatement` from a normalized ``use`` path."""
    segments = split_path(path)
    root = segments[0] if segments else ""
    if root.startswith("{"):
        root = ""
    names, wildcard = _expand_use_tree(path, [])
    namespace = root
    if root in RELATIVE_MARKERS:
        rest = [s for s in segments[1:] if s not in RELATIVE_MARKERS]
        namespace = rest[0] if rest and not rest[0].startswith("{") and rest[0] != "*" else ""
    return ImportStatement(
        path=path,
        root_segment=root,
        is_wildcard=wildcard,
        bound_identifiers=_dedupe(names),
        namespace=namespace,
        is_public=is_public,
    )


def _expand_use_tree(tree: str, prefix: List[str]) -> Tuple[List[str], bool]:
    segments = split_path(tree.strip())
    if not segments:
        return [], False
    base = prefix + segments[:-1]
    last = segments[-1]
    if last.startswith("{") and last.endswith("}"):
        names: List[str] = []
        wildcard = False
        for part in split_top_level(last[1:-1]):
            sub_names, sub_wildcard = _expand_use_tree(part, base)
            names.extend(sub_names)
            wildcard = wildcard or sub_wildcard
        return names, wildcard
    if last == "*":
        return [], True
    alias = re.match(r"^([A-Za-z_][A-Za-z0-9_]*)\s+as\s+([A-Za-z_][A-Za-z0-9_]*)$", last)
    if alias:
        return ([] if alias.group(2) == "_" else [alias.group(2)]), False
    if last == "self":
        return ([base[-1]] if base else []), False
    return [last], False


def _normalize_use_path(raw: str) -> str:
    path = normalize_whitespace(raw)
    path = re.sub(r"\s*::\s*", "::", path)
    path = re.sub(r"\{\s*", "{", path)
    path = re.sub(r"\s*\}", "}", path)
    path = re.sub(r"\s*,\s*", ", ", path)
    path = path.replace(", }", "}")
    return path.strip()


def _named_fields(body: str) -> List[FieldInfo]:
    fields = []
    for part in split_top_level(body):
        match = _FIELD_RE.match(strip_attributes(part))
        if not match:
            continue
        fields.append(FieldInfo(
            name=match.group("name"),
            type=normalize_whitespace(match.group("ty")),
            visibility=Visibility.from_modifier(match.group("vis")),
        ))
    return fields


def _tuple_fields(body: str) -> List[FieldInfo]:
    fields = []
    for index, part in enumerate(split_top_level(body)):
        match = _TUPLE_FIELD_VIS_RE.match(strip_attributes(part))
        if not match:
            continue
        fields.append(FieldInfo(
            name=str(index),
            type=normalize_whitespace(match.group("ty")),
            visibility=Visibility.from_modifier(match.group("vis")),
        ))
    return fields


def _external_types(signature: str, generics: str) -> List[str]:
    """Capitalized names in *signature* that are not its own generic parameters."""
    generic_names = set(_generic_param_names(generics))
    used: List[str] = []
    for type_name in _TYPE_NAME_RE.findall(signature):
        if type_name in generic_names or type_name == "Self" or type_name in used:
            continue
        used.append(type_name)
    return used


def _generic_param_names(generics: str) -> List[str]:
    names = []
    for part in split_top_level(generics):
        part = part.strip()
        if part.startswith("'"):
            continue
        match = _GENERIC_PARAM_RE.match(part)
        if match:
            names.append(match.group(1))
    return names


def _strip_where(text: str) -> str:
    match = re.search(r"\bwhere\b", text)
    return text[:match.start()] if match else text


def _split_for(core: str) -> Tuple[Optional[str], str]:
    depth = 0
    i = 0
    while i < len(core):
        char = core[i]
        if char == "<":
            depth += 1
        elif char == ">" and not (i > 0 and core[i - 1] in "-="):
            depth -= 1
        elif depth == 0 and re.match(r"\sfor\s", core[i:i + 5]):
            return core[:i].strip(), core[i + 4:].strip()
        i += 1
    return None, core.strip()


def _skip_ws(text: str, pos: int) -> int:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return pos


def _skip_generics(masked: str, pos: int) -> Tuple[int, bool]:
    pos = _skip_ws(masked, pos)
    if pos < len(masked) and masked[pos] == "<":
        return find_matching(masked, pos) + 1, True
    return pos, False


def _find_first(masked: str, start: int, chars: str) -> int:
    for i in range(start, len(masked)):
        if masked[i] in chars:
            return i
    return len(masked)


def _nest(flat: List[ItemSpan]) -> List[ItemSpan]:
    """Arrange flat spans into a tree by containment, in source order."""
    ordered = sorted(flat, key=lambda item: (item.start, -item.end))
    roots: List[ItemSpan] = []
    stack: List[ItemSpan] = []
    for item in ordered:
        while stack and not stack[-1].contains(item):
            stack.pop()
        if stack:
            stack[-1].children.append(item)
        else:
            roots.append(item)
        stack.append(item)
    return roots


def _dedupe(names: List[str]) -> List[str]:
    seen = []
    for name in names:
        if name not in seen:
            seen.append(name)
    return seen
