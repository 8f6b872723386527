"""Core data models shared by the analysis pipeline and the extraction orchestrator."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union


class Visibility(str, Enum):
    """Declared visibility of an item. Ordered from most to least public."""

    PUBLIC = "pub"
    RESTRICTED = "pub(crate)"
    PRIVATE = "private"

    @property
    def rank(self) -> int:
        return {"pub": 2, "pub(crate)": 1, "private": 0}[self.value]

    @classmethod
    def from_modifier(cls, modifier: Optional[str]) -> "Visibility":
        """Map a raw modifier (``pub``, ``pub(crate)``, ``pub(super)``...) to a level."""
        if not modifier:
            return cls.PRIVATE
        compact = "".join(modifier.split())
        if compact == "pub":
            return cls.PUBLIC
        if compact.startswith("pub("):
            return cls.RESTRICTED
        return cls.PRIVATE


@dataclass(frozen=True)
class Position:
    """Zero-based line/column position inside a document."""
    line: int
    column: int = 0

    def __str__(self) -> str:
        return f"{self.line + 1}:{self.column + 1}"


@dataclass(frozen=True)
class TextRange:
    """Half-open range between two positions."""
    start: Position
    end: Position

    @classmethod
    def from_lines(cls, start_line: int, end_line: int, end_column: int = 0) -> "TextRange":
        return cls(Position(start_line, 0), Position(end_line, end_column))

    def contains_line(self, line: int) -> bool:
        return self.start.line <= line <= self.end.line

    def intersects(self, other: "TextRange") -> bool:
        return not (
            (other.end.line, other.end.column) < (self.start.line, self.start.column)
            or (self.end.line, self.end.column) < (other.start.line, other.start.column)
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TextRange":
        return cls(Position(**data["start"]), Position(**data["end"]))

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class CodeSpan:
    """A contiguous run of source text together with its location."""
    text: str
    range: TextRange

    @property
    def start(self) -> Position:
        return self.range.start

    @property
    def end(self) -> Position:
        return self.range.end


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------

@dataclass
class FunctionInfo:
    name: str
    signature: str
    is_public: bool = False
    has_generics: bool = False
    used_external_types: List[str] = field(default_factory=list)
    visibility: Visibility = Visibility.PRIVATE


@dataclass
class FieldInfo:
    name: str
    type: str
    visibility: Visibility = Visibility.PRIVATE

    @property
    def is_public(self) -> bool:
        return self.visibility is Visibility.PUBLIC


@dataclass
class StructInfo:
    """A data type with (named or positional) fields."""
    name: str
    visibility: Visibility = Visibility.PRIVATE
    has_generics: bool = False
    fields: List[FieldInfo] = field(default_factory=list)

    @property
    def is_public(self) -> bool:
        return self.visibility is Visibility.PUBLIC


@dataclass
class EnumInfo:
    """A sum type and the names of its variants."""
    name: str
    visibility: Visibility = Visibility.PRIVATE
    has_generics: bool = False
    variants: List[str] = field(default_factory=list)

    @property
    def is_public(self) -> bool:
        return self.visibility is Visibility.PUBLIC


@dataclass
class TraitInfo:
    name: str
    visibility: Visibility = Visibility.PRIVATE
    has_generics: bool = False

    @property
    def is_public(self) -> bool:
        return self.visibility is Visibility.PUBLIC


@dataclass
class ImplementationInfo:
    """An ``impl`` block: target type, optional trait and its methods.

    ``header`` keeps the normalized header text (``impl<T> Trait for Type<T>``)
    so the block can be re-created around extracted methods.
    """
    target_type: str
    trait_name: Optional[str] = None
    methods: List[FunctionInfo] = field(default_factory=list)
    header: str = ""
    has_generics: bool = False

    def render_header(self) -> str:
        if self.header:
            return self.header
        if self.trait_name:
            return f"impl {self.trait_name} for {self.target_type}"
        return f"impl {self.target_type}"


Declaration = Union[FunctionInfo, StructInfo, EnumInfo, TraitInfo, ImplementationInfo]

_DECLARATION_KINDS = {
    "function": FunctionInfo,
    "struct": StructInfo,
    "enum": EnumInfo,
    "trait": TraitInfo,
    "impl": ImplementationInfo,
}


def declaration_kind(decl: Declaration) -> str:
    if isinstance(decl, FunctionInfo):
        return "function"
    if isinstance(decl, StructInfo):
        return "struct"
    if isinstance(decl, EnumInfo):
        return "enum"
    if isinstance(decl, TraitInfo):
        return "trait"
    if isinstance(decl, ImplementationInfo):
        return "impl"
    raise TypeError(f"Not a declaration: {type(decl).__name__}")


def declaration_to_dict(decl: Declaration) -> Dict[str, Any]:
    data = asdict(decl)
    data["kind"] = declaration_kind(decl)
    return data


def declaration_from_dict(data: Dict[str, Any]) -> Declaration:
    payload = dict(data)
    kind = payload.pop("kind")
    if kind == "function":
        return _function_from_dict(payload)
    if kind == "struct":
        fields = [
            FieldInfo(f["name"], f["type"], Visibility(f["visibility"]))
            for f in payload.pop("fields", [])
        ]
        return StructInfo(
            name=payload["name"],
            visibility=Visibility(payload["visibility"]),
            has_generics=payload["has_generics"],
            fields=fields,
        )
    if kind == "enum":
        return EnumInfo(
            name=payload["name"],
            visibility=Visibility(payload["visibility"]),
            has_generics=payload["has_generics"],
            variants=list(payload["variants"]),
        )
    if kind == "trait":
        return TraitInfo(
            name=payload["name"],
            visibility=Visibility(payload["visibility"]),
            has_generics=payload["has_generics"],
        )
    if kind == "impl":
        return _impl_from_dict(payload)
    raise ValueError(f"Unknown declaration kind: {kind}")


def _function_from_dict(data: Dict[str, Any]) -> FunctionInfo:
    return FunctionInfo(
        name=data["name"],
        signature=data["signature"],
        is_public=data["is_public"],
        has_generics=data["has_generics"],
        used_external_types=list(data["used_external_types"]),
        visibility=Visibility(data["visibility"]),
    )


def _impl_from_dict(data: Dict[str, Any]) -> ImplementationInfo:
    return ImplementationInfo(
        target_type=data["target_type"],
        trait_name=data.get("trait_name"),
        methods=[_function_from_dict(m) for m in data.get("methods", [])],
        header=data.get("header", ""),
        has_generics=data.get("has_generics", False),
    )


@dataclass
class DeclarationSet:
    """Everything the structural parser found in one span."""
    functions: List[FunctionInfo] = field(default_factory=list)
    structs: List[StructInfo] = field(default_factory=list)
    enums: List[EnumInfo] = field(default_factory=list)
    traits: List[TraitInfo] = field(default_factory=list)
    implementations: List[ImplementationInfo] = field(default_factory=list)
    top_level: List[Declaration] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------

RELATIVE_MARKERS = ("crate", "super", "self")


@dataclass
class ImportStatement:
    """A ``use`` path plus what it binds in the importing module."""
    path: str
    root_segment: str = ""
    is_wildcard: bool = False
    bound_identifiers: List[str] = field(default_factory=list)
    namespace: str = ""
    is_public: bool = False

    @property
    def is_external(self) -> bool:
        return self.root_segment not in RELATIVE_MARKERS

    @property
    def is_parent_relative(self) -> bool:
        return self.root_segment == "super"

    @property
    def is_self_relative(self) -> bool:
        return self.root_segment == "self"

    def render(self) -> str:
        return f"use {self.path};"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImportStatement":
        return cls(**data)


# ---------------------------------------------------------------------------
# Analysis result
# ---------------------------------------------------------------------------

@dataclass
class AnalysisResult:
    """Aggregate output of the analysis pipeline for one extraction request."""
    selected_code: str
    used_types: Set[str] = field(default_factory=set)
    used_traits: Set[str] = field(default_factory=set)
    functions: List[FunctionInfo] = field(default_factory=list)
    structs: List[StructInfo] = field(default_factory=list)
    enums: List[EnumInfo] = field(default_factory=list)
    traits: List[TraitInfo] = field(default_factory=list)
    implementations: List[ImplementationInfo] = field(default_factory=list)
    top_level: List[Declaration] = field(default_factory=list)
    imports: List[ImportStatement] = field(default_factory=list)
    visibility: Visibility = Visibility.PRIVATE
    has_generic_params: bool = False
    is_inside_impl: bool = False
    impl_context: Optional[ImplementationInfo] = None
    source_path: str = ""

    def defined_type_names(self) -> Set[str]:
        names = {s.name for s in self.structs}
        names.update(e.name for e in self.enums)
        names.update(t.name for t in self.traits)
        return names

    def public_items(self) -> List[str]:
        """Names of public top-level items that a parent can re-export."""
        items: List[str] = []
        for decl in self.top_level:
            if isinstance(decl, ImplementationInfo):
                continue
            if isinstance(decl, FunctionInfo):
                if self.is_inside_impl:
                    # Methods get wrapped back into an impl block.
                    continue
                if decl.is_public:
                    items.append(decl.name)
            elif decl.visibility is Visibility.PUBLIC:
                items.append(decl.name)
        return items

    def item_names(self) -> Dict[str, List[str]]:
        return {
            "functions": [f.name for f in self.functions],
            "structs": [s.name for s in self.structs],
            "enums": [e.name for e in self.enums],
            "traits": [t.name for t in self.traits],
            "impls": [i.render_header() for i in self.implementations],
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected_code": self.selected_code,
            "used_types": sorted(self.used_types),
            "used_traits": sorted(self.used_traits),
            "functions": [asdict(f) for f in self.functions],
            "structs": [asdict(s) for s in self.structs],
            "enums": [asdict(e) for e in self.enums],
            "traits": [asdict(t) for t in self.traits],
            "implementations": [asdict(i) for i in self.implementations],
            "top_level": [declaration_to_dict(d) for d in self.top_level],
            "imports": [i.to_dict() for i in self.imports],
            "visibility": self.visibility.value,
            "has_generic_params": self.has_generic_params,
            "is_inside_impl": self.is_inside_impl,
            "impl_context": asdict(self.impl_context) if self.impl_context else None,
            "source_path": self.source_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        def decls(kind: str, items: List[Dict[str, Any]]) -> List[Any]:
            return [declaration_from_dict({**item, "kind": kind}) for item in items]

        impl_context = data.get("impl_context")
        return cls(
            selected_code=data["selected_code"],
            used_types=set(data.get("used_types", [])),
            used_traits=set(data.get("used_traits", [])),
            functions=decls("function", data.get("functions", [])),
            structs=decls("struct", data.get("structs", [])),
            enums=decls("enum", data.get("enums", [])),
            traits=decls("trait", data.get("traits", [])),
            implementations=decls("impl", data.get("implementations", [])),
            top_level=[declaration_from_dict(d) for d in data.get("top_level", [])],
            imports=[ImportStatement.from_dict(i) for i in data.get("imports", [])],
            visibility=Visibility(data.get("visibility", "private")),
            has_generic_params=data.get("has_generic_params", False),
            is_inside_impl=data.get("is_inside_impl", False),
            impl_context=_impl_from_dict(impl_context) if impl_context else None,
            source_path=data.get("source_path", ""),
        )


# ---------------------------------------------------------------------------
# Oracle types
# ---------------------------------------------------------------------------

class DiagnosticSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    HINT = "hint"

    @classmethod
    def from_level(cls, level: str) -> "DiagnosticSeverity":
        level = (level or "").lower()
        if level.startswith("error"):
            return cls.ERROR
        if level == "warning":
            return cls.WARNING
        if level == "help":
            return cls.HINT
        return cls.INFO


@dataclass
class Diagnostic:
    severity: DiagnosticSeverity
    message: str
    range: Optional[TextRange] = None
    source: str = ""

    @property
    def is_error(self) -> bool:
        return self.severity is DiagnosticSeverity.ERROR

    def location(self) -> str:
        return str(self.range.start) if self.range else "?"

    def __str__(self) -> str:
        return f"[{self.severity.value}] {self.location()}: {self.message}"


@dataclass
class TextEdit:
    file_path: str
    range: TextRange
    new_text: str


@dataclass
class QuickFix:
    description: str
    edits: List[TextEdit] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

class ExtractionState(str, Enum):
    ANALYZING = "analyzing"
    CONTENT_GENERATED = "content_generated"
    FILE_WRITTEN = "file_written"
    PARENT_UPDATED = "parent_updated"
    ORIGINAL_REMOVED = "original_removed"
    VALIDATING = "validating"
    RETRY_FIX = "retry_fix"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class ExtractionRequest:
    """One extract-to-module invocation.

    ``selection`` uses zero-based positions. ``symbol_name`` takes priority
    over the selection when it names a declaration in the source file.
    """
    source_path: Path
    module_name: str
    selection: Optional[TextRange] = None
    module_path: Optional[str] = None
    symbol_name: Optional[str] = None
    summary: Optional[str] = None
    expand_selection: bool = True
    validate: bool = True
    dry_run: bool = False


@dataclass
class ExtractionReport:
    state: ExtractionState
    module_name: str
    module_path: str = ""
    source_path: str = ""
    registration_file: Optional[str] = None
    extraction_method: str = "line_numbers"
    content: str = ""
    items: Dict[str, List[str]] = field(default_factory=dict)
    public_exports: List[str] = field(default_factory=list)
    usage: str = ""
    impl_context: Optional[Dict[str, Optional[str]]] = None
    attempts: int = 0
    applied_fixes: List[str] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    transitions: List[ExtractionState] = field(default_factory=list)
    diffs: Dict[str, str] = field(default_factory=dict)
    backup_id: Optional[str] = None
    rolled_back: bool = False
    from_cache: bool = False

    @property
    def success(self) -> bool:
        return self.state is ExtractionState.DONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "state": self.state.value,
            "module_name": self.module_name,
            "module_path": self.module_path,
            "source_path": self.source_path,
            "registration_file": self.registration_file,
            "extraction_method": self.extraction_method,
            "extracted_items": self.items,
            "public_exports": self.public_exports,
            "usage": self.usage,
            "impl_context": self.impl_context,
            "attempts": self.attempts,
            "applied_fixes": self.applied_fixes,
            "diagnostics": [str(d) for d in self.diagnostics],
            "backup_id": self.backup_id,
            "rolled_back": self.rolled_back,
            "from_cache": self.from_cache,
        }


# ---------------------------------------------------------------------------
# Name resolution
# ---------------------------------------------------------------------------

class ItemSource(str, Enum):
    STD = "std"
    CORE = "core"
    EXTERNAL = "external"
    LOCAL = "local"


@dataclass
class ImportableItem:
    """Something a ``use`` line can bring into scope."""
    full_path: str
    name: str
    kind: str
    source: ItemSource
    crate_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["source"] = self.source.value
        return data


@dataclass
class ImportMatch:
    """A candidate import for an unresolved name, scored 0.0-1.0."""
    item: ImportableItem
    confidence: float
    match_type: str
    distance: int = 0

    @property
    def is_exact(self) -> bool:
        return self.match_type == "exact"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type_name": self.item.name,
            "import_path": self.item.full_path,
            "confidence": round(self.confidence, 3),
            "match_type": self.match_type,
        }


# ---------------------------------------------------------------------------
# Whole-file refactoring
# ---------------------------------------------------------------------------

class StepStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class RefactorStep:
    step_number: int
    action: str
    description: str
    status: StepStatus = StepStatus.PENDING
    symbol_name: Optional[str] = None
    module_name: Optional[str] = None
    module_path: Optional[str] = None
    error: Optional[str] = None
    report: Optional[ExtractionReport] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_number": self.step_number,
            "action": self.action,
            "description": self.description,
            "status": self.status.value,
            "symbol_name": self.symbol_name,
            "module_name": self.module_name,
            "module_path": self.module_path,
            "error": self.error,
            "report": self.report.to_dict() if self.report else None,
        }


@dataclass
class ExtractedModule:
    module_name: str
    module_path: str
    symbols: List[str] = field(default_factory=list)


@dataclass
class RefactorResult:
    """Step plan and outcome of splitting one file into modules.

    Failed steps do not stop the run; ``success`` is true only when none
    failed.
    """
    file_path: str
    steps: List[RefactorStep] = field(default_factory=list)
    extracted_modules: List[ExtractedModule] = field(default_factory=list)
    missing_imports: List[str] = field(default_factory=list)
    suggested_imports: List[ImportMatch] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(step.status is not StepStatus.FAILED for step in self.steps)

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def completed_steps(self) -> int:
        return sum(1 for step in self.steps if step.status is StepStatus.COMPLETE)

    def add_step(self, action: str, description: str, **kwargs: Any) -> RefactorStep:
        step = RefactorStep(len(self.steps) + 1, action, description, **kwargs)
        self.steps.append(step)
        return step

    def record_module(self, module_name: str, module_path: str, symbol: str) -> None:
        for module in self.extracted_modules:
            if module.module_path == module_path:
                module.symbols.append(symbol)
                return
        self.extracted_modules.append(ExtractedModule(module_name, module_path, [symbol]))

    def summary(self) -> str:
        failed = self.total_steps - self.completed_steps
        if failed:
            lines = [
                f"⚠️  Refactoring partial: {self.completed_steps}/{self.total_steps} steps successful, "
                f"{failed} failed"
            ]
        else:
            lines = [f"✅ Refactoring complete: {self.completed_steps}/{self.total_steps} steps successful"]
        if self.extracted_modules:
            lines.append("")
            lines.append("Extracted modules:")
            for module in self.extracted_modules:
                lines.append(f"  - {module.module_path}: {', '.join(module.symbols)}")
        if self.suggested_imports:
            lines.append("")
            lines.append("Suggested imports:")
            for match in self.suggested_imports:
                lines.append(f"  - use {match.item.full_path}; ({match.confidence:.0%} match)")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "file_path": self.file_path,
            "total_steps": self.total_steps,
            "completed_steps": self.completed_steps,
            "steps": [step.to_dict() for step in self.steps],
            "extracted_modules": [asdict(m) for m in self.extracted_modules],
            "missing_imports": self.missing_imports,
            "suggested_imports": [m.to_dict() for m in self.suggested_imports],
            "summary": self.summary(),
        }
