"""Extract-to-module orchestration.

An extraction walks through a fixed sequence of states::

    ANALYZING -> CONTENT_GENERATED -> FILE_WRITTEN -> PARENT_UPDATED
      -> ORIGINAL_REMOVED -> VALIDATING -> DONE
                                  |  ^
                                  v  |
                              RETRY_FIX        (bounded, else ABORTED)

Nothing touches the filesystem before FILE_WRITTEN, so an extraction can
be cancelled (or fail on bad input) without side effects up to that point.
Every file written afterwards is snapshotted by the :class:`DiffEngine`
so an aborted extraction can be rolled back.
"""

from __future__ import annotations

import asyncio
import logging
import re
import textwrap
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .analyzer import RustCodeAnalyzer
from .cache import AnalysisCache, CacheStore
from .compiler_bridge import CompilerBridge
from .config import BACKUP_DIR_NAME, cache_dir
from .config_manager import ExtractionSettings, load_settings
from .diagnostics import (
    CargoDiagnosticsProvider,
    DiagnosticsProvider,
    NullDiagnosticsProvider,
)
from .diff_engine import DiffEngine, FileChange
from .document import Document
from .errors import ExtractionCancelled, InputError, RustSplitError, ValidationFailed, WorkspaceError
from .import_resolver import ImportResolver, module_path_from_file
from .models import (
    AnalysisResult,
    CodeSpan,
    Diagnostic,
    DiagnosticSeverity,
    ExtractionReport,
    ExtractionRequest,
    ExtractionState,
    ImplementationInfo,
    ImportStatement,
    Position,
    RefactorResult,
    StepStatus,
    TextEdit,
    TextRange,
)
from .module_registry import ModuleRegistry, Registration, validate_module_name
from .name_resolution import NameResolver
from .symbol_expander import SymbolExpander

FIX_HEURISTIC = re.compile(r"import|insert|fix", re.IGNORECASE)
UNUSED_IMPORT_MARKERS = ("unused import", "never used")
_IMPL_START = re.compile(r"^(?:unsafe\s+)?impl\b")


# ===================================================================
# Module content
# ===================================================================

def wrap_in_impl(code: str, impl_info: ImplementationInfo) -> str:
    """Put *code* back inside its ``impl`` header unless it already is one."""
    body = textwrap.dedent(code).strip()
    if _IMPL_START.match(body):
        return body
    return f"{impl_info.render_header()} {{\n{textwrap.indent(body, '    ')}\n}}"


def module_header(module_name: str, summary: Optional[str], source_label: str) -> List[str]:
    if summary:
        return [f"//! {line}".rstrip() for line in summary.strip().splitlines()]
    title = module_name.replace("_", " ")
    title = title[:1].upper() + title[1:]
    return [
        f"//! {title} module",
        "//!",
        f"//! Extracted from `{source_label}`.",
    ]


def build_module_content(
    body: str,
    imports: List[ImportStatement],
    header: Optional[List[str]] = None,
) -> str:
    sections = []
    if header:
        sections.append("\n".join(header))
    if imports:
        sections.append("\n".join(statement.render() for statement in imports))
    sections.append(body.strip("\n"))
    return "\n\n".join(sections) + "\n"


def apply_text_edits(text: str, edits: List[TextEdit]) -> str:
    """Apply edits to *text*, last position first so offsets stay valid."""
    document = Document(Path("<edit>"), text)
    resolved = sorted(
        ((document.offset_at(e.range.start), document.offset_at(e.range.end), e.new_text) for e in edits),
        key=lambda item: (item[0], item[1]),
        reverse=True,
    )
    for start, end, new_text in resolved:
        text = text[:start] + new_text + text[end:]
    return text


def remove_span(text: str, start: int, end: int, captured: str) -> str:
    """Delete ``[start, end)`` from *text*, which must still hold *captured*."""
    if text[start:end] != captured:
        raise WorkspaceError("The selected code changed while extracting; refusing to delete it")
    return text[:start] + text[end:]


# ===================================================================
# Whole-file refactoring
# ===================================================================

_WORD_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
SUGGESTION_CONFIDENCE = 0.5


def snake_case(name: str) -> str:
    """``HttpServer`` / ``HTTPServer`` -> ``http_server``."""
    return _WORD_BOUNDARY.sub("_", name).lower()


def conventional_module_path(
    symbol: str,
    analysis: AnalysisResult,
    target_dir: Optional[str] = None,
    source_root: str = "src",
) -> str:
    """Where a symbol moved by a whole-file refactor goes.

    Types with methods but no struct of their own go to ``services/``,
    structs and enums to ``models/`` and everything else to ``utils/``.
    """
    file_name = f"{snake_case(symbol)}.rs"
    if target_dir:
        return f"{target_dir.rstrip('/')}/{file_name}"
    has_methods = any(i.target_type == symbol and i.methods for i in analysis.implementations)
    is_struct = any(s.name == symbol for s in analysis.structs)
    is_enum = any(e.name == symbol for e in analysis.enums)
    if has_methods and not is_struct:
        return f"{source_root}/services/{file_name}"
    if is_struct or is_enum:
        return f"{source_root}/models/{file_name}"
    return f"{source_root}/utils/{file_name}"


# ===================================================================
# Orchestrator
# ===================================================================

class ExtractionOrchestrator:
    """Runs extract-to-module requests, one at a time per source file."""

    def __init__(
        self,
        workspace_root: Path,
        settings: Optional[ExtractionSettings] = None,
        analyzer: Optional[RustCodeAnalyzer] = None,
        expander: Optional[SymbolExpander] = None,
        resolver: Optional[ImportResolver] = None,
        diagnostics: Optional[DiagnosticsProvider] = None,
        bridge: Optional[CompilerBridge] = None,
        name_resolver: Optional[NameResolver] = None,
        registry: Optional[ModuleRegistry] = None,
        diff_engine: Optional[DiffEngine] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.workspace_root = Path(workspace_root).resolve()
        self.settings = settings or ExtractionSettings()
        self.logger = logger or logging.getLogger(__name__)
        self.analyzer = analyzer or RustCodeAnalyzer(
            cache=AnalysisCache(self.settings.cache_max_entries, logger=self.logger),
            logger=self.logger,
        )
        self.expander = expander or SymbolExpander(logger=self.logger)
        self.resolver = resolver or ImportResolver(logger=self.logger)
        self.diagnostics = diagnostics or NullDiagnosticsProvider()
        self.bridge = bridge or CompilerBridge(
            self.settings.bridge_binary,
            self.workspace_root,
            timeout=self.settings.bridge_timeout,
            logger=self.logger,
        )
        self.name_resolver = name_resolver or NameResolver(
            self.workspace_root, parser=self.analyzer.parser, logger=self.logger,
        )
        self.registry = registry or ModuleRegistry(self.workspace_root, logger=self.logger)
        self.diff_engine = diff_engine or DiffEngine(cache_dir(self.workspace_root) / BACKUP_DIR_NAME)
        self._locks: Dict[Path, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def analyze(self, request: ExtractionRequest) -> Tuple[AnalysisResult, CodeSpan]:
        """Run only the analysis stage of *request*."""
        source = self._source_path(request.source_path)
        document = Document.load(source)
        span, offset, _ = await self._resolve_span(document, request)
        return self.analyzer.analyze(document, span, offset), span

    async def extract(
        self,
        request: ExtractionRequest,
        cancel: Optional[asyncio.Event] = None,
    ) -> ExtractionReport:
        """Extract the requested code into a new module.

        Raises:
            InputError: bad module name, path or selection.
            WorkspaceError: a file could not be read or written.
            ExtractionCancelled: *cancel* was set before any file was written.
            ValidationFailed: the new module still has errors after the
                retry budget; ``exc.report`` holds the diagnostics.
        """
        source = self._source_path(request.source_path)
        lock = self._locks.setdefault(source, asyncio.Lock())
        async with lock:
            return await self._extract(request, source, cancel)

    async def refactor_file(
        self,
        source_path: Path,
        symbols: Optional[List[str]] = None,
        target_dir: Optional[str] = None,
        validate: bool = True,
        dry_run: bool = False,
        cancel: Optional[asyncio.Event] = None,
    ) -> RefactorResult:
        """Split a file into modules, one extraction step per symbol.

        Without *symbols* every public top-level item is moved, each to
        :func:`conventional_module_path` (or *target_dir*). A failed step
        is recorded and the run continues; cancellation ends the run after
        recording the current step. The last step lists the types the file
        leaves unresolved and candidate imports for them.

        Raises:
            InputError: the source is not a Rust file inside the workspace.
        """
        source = self._source_path(source_path)
        result = RefactorResult(file_path=self._label(source))

        step = result.add_step("analyze", "Analyzing file to discover symbols")
        try:
            document = Document.load(source)
            whole = document.span(document.lines_range(0, document.line_count - 1))
            analysis = self.analyzer.analyze(document, whole, 0)
        except RustSplitError as exc:
            step.status, step.error = StepStatus.FAILED, str(exc)
            return result
        step.status = StepStatus.COMPLETE

        for name in symbols or analysis.public_items():
            module_name = snake_case(name)
            module_path = conventional_module_path(
                name, analysis, target_dir, self.settings.default_module_path,
            )
            step = result.add_step(
                "extract", f"Extracting symbol '{name}'",
                symbol_name=name, module_name=module_name, module_path=module_path,
            )
            request = ExtractionRequest(
                source_path=source,
                module_name=module_name,
                module_path=module_path,
                symbol_name=name,
                validate=validate,
                dry_run=dry_run,
            )
            try:
                step.report = await self.extract(request, cancel)
            except ExtractionCancelled as exc:
                step.status, step.error = StepStatus.FAILED, str(exc)
                return result
            except RustSplitError as exc:
                step.status, step.error = StepStatus.FAILED, str(exc)
                step.report = getattr(exc, "report", None)
                self.logger.warning("Step %d (%s) failed: %s", step.step_number, name, exc)
                continue
            step.status = StepStatus.COMPLETE
            result.record_module(module_name, module_path, name)

        step = result.add_step("import", "Analyzing and suggesting imports")
        result.missing_imports = self.resolver.unresolved_types(analysis, document.text)
        if result.missing_imports and self.settings.suggest_missing_imports:
            result.suggested_imports = [
                match for match in self.name_resolver.find_matches(result.missing_imports)
                if match.confidence > SUGGESTION_CONFIDENCE
            ]
        else:
            step.description = "No missing types to import"
        step.status = StepStatus.COMPLETE

        self.logger.info(
            "Refactored %s: %d/%d step(s) complete",
            result.file_path, result.completed_steps, result.total_steps,
        )
        return result

    def rollback(self, report: ExtractionReport) -> bool:
        """Undo the file changes of an extraction that was kept after an abort."""
        if not report.backup_id or report.rolled_back:
            return False
        report.rolled_back = self.diff_engine.rollback(report.backup_id)
        return report.rolled_back

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _extract(
        self,
        request: ExtractionRequest,
        source: Path,
        cancel: Optional[asyncio.Event],
    ) -> ExtractionReport:
        report = ExtractionReport(
            state=ExtractionState.ANALYZING,
            module_name=request.module_name,
            source_path=str(source),
        )
        self._transition(report, ExtractionState.ANALYZING)

        validate_module_name(request.module_name)
        module_file = self.registry.resolve_module_file(
            request.module_name, request.module_path, self.settings.default_module_path,
        )
        if module_file == source:
            raise InputError("The new module cannot replace the source file")
        if module_file.exists():
            raise InputError(f"Module file already exists: {module_file}")
        report.module_path = str(module_file)

        document = Document.load(source)
        span, selection_offset, method = await self._resolve_span(document, request)
        report.extraction_method = method
        delete_start = document.offset_at(span.start)
        delete_end = document.offset_at(span.end)

        analysis = self.analyzer.analyze(document, span, selection_offset)
        report.from_cache = self.analyzer.last_from_cache
        self._check_cancelled(cancel)

        content = await self._generate_content(request, document, span, analysis)
        self._fill_report(report, analysis, content, module_file)
        self._transition(report, ExtractionState.CONTENT_GENERATED)
        self._check_cancelled(cancel)

        conversion = None
        if self.settings.convert_module_files:
            conversion = self.registry.check_module_conversion(module_file)

        if request.dry_run:
            report.diffs = self._preview(
                document, request.module_name, module_file, content, conversion, bool(report.public_exports),
                delete_start, delete_end, span.text,
            )
            return report

        backup_id = self.diff_engine.begin_backup(
            f"Extract {request.module_name} from {self._label(source)}"
        )
        report.backup_id = backup_id
        try:
            self._write_module(backup_id, module_file, content, conversion)
            if conversion is not None and conversion[0] == source:
                source = conversion[1]
                report.source_path = str(source)
            self._transition(report, ExtractionState.FILE_WRITTEN)

            registration = self._register(backup_id, module_file, request.module_name, bool(report.public_exports))
            if registration is not None:
                report.registration_file = str(registration.file)
                if registration.file.resolve() == source:
                    delete_start = registration.shift(delete_start)
                    delete_end = registration.shift(delete_end)
            self._transition(report, ExtractionState.PARENT_UPDATED)

            self.diff_engine.snapshot(backup_id, source)
            current = source.read_text(encoding="utf-8")
            source.write_text(remove_span(current, delete_start, delete_end, span.text), encoding="utf-8")
            self._transition(report, ExtractionState.ORIGINAL_REMOVED)
        except (OSError, WorkspaceError) as exc:
            self._transition(report, ExtractionState.ABORTED)
            if self.settings.rollback_on_abort:
                report.rolled_back = self.diff_engine.rollback(backup_id)
            if isinstance(exc, WorkspaceError):
                exc.report = report
                raise
            raise WorkspaceError(
                f"Extraction of '{request.module_name}' failed: {exc}", report=report,
            ) from exc

        if request.validate:
            await self._validate(report, module_file, backup_id)
        else:
            self._transition(report, ExtractionState.DONE)

        self.logger.info(
            "Extracted %s to %s (%d attempt(s))",
            request.module_name, self._label(module_file), report.attempts,
        )
        return report

    async def _validate(self, report: ExtractionReport, module_file: Path, backup_id: str) -> None:
        max_attempts = max(1, self.settings.max_validation_attempts)
        while True:
            report.attempts += 1
            self._transition(report, ExtractionState.VALIDATING)
            errors = [d for d in await self._check(module_file) if d.is_error]
            if not errors:
                report.diagnostics = []
                self._transition(report, ExtractionState.DONE)
                if self.settings.cleanup_unused_imports:
                    await self._cleanup_unused_imports(report, module_file, backup_id)
                return

            report.diagnostics = errors
            self.logger.info(
                "Validation attempt %d/%d: %d error(s) in %s",
                report.attempts, max_attempts, len(errors), module_file.name,
            )
            if report.attempts >= max_attempts:
                break

            applied = await self._apply_quick_fixes(module_file, errors, backup_id)
            if applied:
                report.applied_fixes.extend(applied)
                self._transition(report, ExtractionState.RETRY_FIX)
            else:
                # Diagnostics may still be stale; re-check after the settle delay.
                self.logger.debug("No applicable quick fix for %s", module_file.name)

        self._transition(report, ExtractionState.ABORTED)
        if self.settings.rollback_on_abort:
            report.rolled_back = self.diff_engine.rollback(backup_id)
            self.logger.warning("Rolled back extraction of %s", report.module_name)
        raise ValidationFailed(report)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _resolve_span(
        self,
        document: Document,
        request: ExtractionRequest,
    ) -> Tuple[CodeSpan, int, str]:
        """Span to extract, offset for impl detection, and how it was found."""
        if request.symbol_name:
            span = await self.expander.find_symbol(document, request.symbol_name)
            if span is not None:
                return span, document.offset_at(span.start), "symbol"
            if request.selection is None:
                raise InputError(f"Symbol '{request.symbol_name}' not found in {document.path.name}")
            self.logger.warning(
                "Symbol '%s' not found in %s; using the line selection",
                request.symbol_name, document.path.name,
            )

        if request.selection is None:
            raise InputError("A selection or a symbol name is required")
        document.validate_range(request.selection)
        offset = document.offset_at(request.selection.start)

        if request.expand_selection:
            inside_impl = self.analyzer.impl_detector.detect(document.text, offset).is_inside_impl
            span = await self.expander.expand(document, request.selection, include_enclosing=not inside_impl)
            if span is not None and span.text.strip():
                return span, offset, "expanded"
        return document.span(request.selection), offset, "line_numbers"

    async def _generate_content(
        self,
        request: ExtractionRequest,
        document: Document,
        span: CodeSpan,
        analysis: AnalysisResult,
    ) -> str:
        code = _with_leading_indent(document, span)
        if analysis.is_inside_impl and analysis.impl_context is not None:
            body = wrap_in_impl(code, analysis.impl_context)
        else:
            body = textwrap.dedent(code).strip()

        worker = await self.bridge.run(document.path)
        suggestions = list(worker.suggested_imports)
        if self.settings.suggest_missing_imports:
            missing = self.resolver.unresolved_types(analysis, body, worker.unresolved_types, suggestions)
            if missing:
                self.logger.debug("Unresolved in %s: %s", request.module_name, ", ".join(missing))
                suggestions.extend(self.name_resolver.suggest_imports(missing))

        imports = self.resolver.resolve(
            analysis,
            body,
            module_path_from_file(self.workspace_root, document.path),
            suggestions,
        )
        header = None
        if self.settings.add_module_doc_comments or request.summary:
            header = module_header(request.module_name, request.summary, self._label(document.path))
        return build_module_content(body, imports, header)

    def _fill_report(
        self,
        report: ExtractionReport,
        analysis: AnalysisResult,
        content: str,
        module_file: Path,
    ) -> None:
        report.content = content
        report.items = analysis.item_names()
        report.public_exports = analysis.public_items()
        module_path = module_path_from_file(self.workspace_root, module_file)
        report.usage = f"use crate::{'::'.join(module_path)}::*;"
        if analysis.is_inside_impl and analysis.impl_context is not None:
            report.impl_context = {
                "target": analysis.impl_context.target_type,
                "trait": analysis.impl_context.trait_name,
            }

    def _write_module(
        self,
        backup_id: str,
        module_file: Path,
        content: str,
        conversion: Optional[Tuple[Path, Path]],
    ) -> None:
        if conversion is not None:
            flat, index = conversion
            self.diff_engine.snapshot(backup_id, flat)
            self.diff_engine.snapshot(backup_id, index)
            self._make_dirs(backup_id, index.parent)
            self.registry.convert_module_to_folder(flat, index)

        self._make_dirs(backup_id, module_file.parent)
        self.diff_engine.snapshot(backup_id, module_file)
        module_file.write_text(content, encoding="utf-8")

    def _register(
        self,
        backup_id: str,
        module_file: Path,
        module_name: str,
        reexport: bool,
    ) -> Optional[Registration]:
        registration_file = self.registry.find_registration_file(module_file)
        if registration_file is None:
            self.logger.warning(
                "No registration file found for %s; add `mod %s;` manually",
                self._label(module_file), module_name,
            )
            return None
        text = registration_file.read_text(encoding="utf-8")
        registration = self.registry.plan_registration(
            registration_file, text, module_name, module_file, reexport,
        )
        if registration.changed:
            self.diff_engine.snapshot(backup_id, registration_file)
            registration_file.write_text(registration.new_text, encoding="utf-8")
        return registration

    def _preview(
        self,
        document: Document,
        module_name: str,
        module_file: Path,
        content: str,
        conversion: Optional[Tuple[Path, Path]],
        reexport: bool,
        delete_start: int,
        delete_end: int,
        captured: str,
    ) -> Dict[str, str]:
        source = document.path.resolve()
        changes = [FileChange(self._label(module_file), "create", None, content)]

        source_moved = False
        if conversion is not None:
            flat, registration_file = conversion
            registration_text: Optional[str] = flat.read_text(encoding="utf-8")
            changes.append(FileChange(self._label(flat), "delete", registration_text, None))
            source_moved = flat.resolve() == source
        else:
            registration_file = self.registry.find_registration_file(module_file)
            registration_text = (
                registration_file.read_text(encoding="utf-8") if registration_file else None
            )

        source_text = document.text
        if registration_file is not None and registration_text is not None:
            registration = self.registry.plan_registration(
                registration_file, registration_text, module_name, module_file, reexport,
            )
            if source_moved or registration_file.resolve() == source:
                source_text = registration.new_text
                delete_start = registration.shift(delete_start)
                delete_end = registration.shift(delete_end)
            elif conversion is not None:
                changes.append(FileChange(self._label(registration_file), "create", None, registration.new_text))
            elif registration.changed:
                changes.append(FileChange(
                    self._label(registration_file), "modify",
                    registration.original_text, registration.new_text,
                ))

        new_source = remove_span(source_text, delete_start, delete_end, captured)
        if source_moved:
            changes.append(FileChange(self._label(conversion[1]), "create", None, new_source))
        else:
            changes.append(FileChange(self._label(document.path), "modify", document.text, new_source))

        previews = {}
        for change in changes:
            if change.change_type == "modify":
                previews[change.file_path] = self.diff_engine.create_diff(
                    change.original_content or "", change.new_content or "", change.file_path,
                )
            elif change.change_type == "create":
                previews[change.file_path] = change.new_content or ""
            else:
                previews[change.file_path] = ""
        return previews

    # ------------------------------------------------------------------
    # Oracle interaction
    # ------------------------------------------------------------------

    async def _check(self, module_file: Path) -> List[Diagnostic]:
        await asyncio.sleep(self.settings.settle_delay)
        try:
            return await self.diagnostics.check(module_file)
        except Exception as exc:
            self.logger.warning("Diagnostics unavailable for %s: %s", module_file.name, exc)
            return []

    async def _fixes_for(self, module_file: Path, diagnostic: Diagnostic):
        text_range = diagnostic.range or TextRange(Position(0, 0), Position(0, 0))
        try:
            return await self.diagnostics.quick_fixes(module_file, text_range)
        except Exception as exc:
            self.logger.warning("Quick fixes unavailable for %s: %s", module_file.name, exc)
            return []

    async def _apply_quick_fixes(
        self,
        module_file: Path,
        errors: List[Diagnostic],
        backup_id: str,
        pattern: "re.Pattern[str]" = FIX_HEURISTIC,
    ) -> List[str]:
        """Apply the first matching fix for each diagnostic; return their descriptions."""
        chosen = []
        seen = set()
        for diagnostic in errors:
            for fix in await self._fixes_for(module_file, diagnostic):
                if not fix.edits or not pattern.search(fix.description):
                    continue
                signature = (fix.description, tuple((e.file_path, str(e.range), e.new_text) for e in fix.edits))
                if signature not in seen:
                    seen.add(signature)
                    chosen.append(fix)
                break

        by_file: Dict[Path, List[TextEdit]] = defaultdict(list)
        for fix in chosen:
            for edit in fix.edits:
                by_file[Path(edit.file_path).resolve()].append(edit)
        try:
            for file_path, edits in by_file.items():
                self.diff_engine.snapshot(backup_id, file_path)
                text = file_path.read_text(encoding="utf-8")
                file_path.write_text(apply_text_edits(text, edits), encoding="utf-8")
        except OSError as exc:
            raise WorkspaceError(f"Could not apply quick fix: {exc}") from exc

        for fix in chosen:
            self.logger.info("Applied quick fix: %s", fix.description)
        return [fix.description for fix in chosen]

    async def _cleanup_unused_imports(self, report: ExtractionReport, module_file: Path, backup_id: str) -> None:
        """Best-effort removal of imports the compiler reports as unused."""
        unused = [
            d for d in await self._check(module_file)
            if d.severity is DiagnosticSeverity.WARNING
            and any(marker in d.message.lower() for marker in UNUSED_IMPORT_MARKERS)
        ]
        if not unused:
            return
        try:
            removed = await self._apply_quick_fixes(
                module_file, unused, backup_id, pattern=re.compile(r"remove", re.IGNORECASE),
            )
        except WorkspaceError as exc:
            self.logger.warning("Unused import cleanup failed: %s", exc)
            return
        report.applied_fixes.extend(removed)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _source_path(self, source_path: Path) -> Path:
        source = Path(source_path)
        if not source.is_absolute():
            source = self.workspace_root / source
        source = source.resolve()
        if source.suffix != ".rs":
            raise InputError(f"Not a Rust source file: {source}")
        if not source.is_file():
            raise InputError(f"Source file not found: {source}")
        if self.workspace_root not in source.parents:
            raise InputError(f"{source} is outside the workspace {self.workspace_root}")
        return source

    def _make_dirs(self, backup_id: str, directory: Path) -> None:
        missing = []
        current = directory
        while not current.exists():
            missing.append(current)
            current = current.parent
        directory.mkdir(parents=True, exist_ok=True)
        for created in reversed(missing):
            self.diff_engine.record_created_dir(backup_id, created)

    def _label(self, path: Path) -> str:
        try:
            return Path(path).resolve().relative_to(self.workspace_root).as_posix()
        except ValueError:
            return str(path)

    def _transition(self, report: ExtractionReport, state: ExtractionState) -> None:
        report.state = state
        report.transitions.append(state)
        self.logger.debug("%s -> %s", report.module_name, state.value)

    @staticmethod
    def _check_cancelled(cancel: Optional[asyncio.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise ExtractionCancelled("Extraction cancelled before any file was written")


def _with_leading_indent(document: Document, span: CodeSpan) -> str:
    """Span text with the indentation before a mid-line start restored."""
    if span.start.column == 0:
        return span.text
    prefix = document.line_text(span.start.line)[:span.start.column]
    return (prefix if not prefix.strip() else "") + span.text


# ===================================================================
# Factory
# ===================================================================

def create_orchestrator(
    workspace_root: Path,
    settings: Optional[ExtractionSettings] = None,
    use_cargo: bool = True,
    logger: Optional[logging.Logger] = None,
) -> ExtractionOrchestrator:
    """Orchestrator wired with the persistent cache and cargo diagnostics."""
    workspace_root = Path(workspace_root).resolve()
    settings = settings or load_settings(workspace_root)
    logger = logger or logging.getLogger(__name__)
    cache = AnalysisCache(
        settings.cache_max_entries,
        store=CacheStore(workspace_root, settings.cache_max_entries),
        logger=logger,
    )
    diagnostics: DiagnosticsProvider
    if use_cargo:
        diagnostics = CargoDiagnosticsProvider(workspace_root, timeout=settings.bridge_timeout, logger=logger)
    else:
        diagnostics = NullDiagnosticsProvider()
    return ExtractionOrchestrator(
        workspace_root,
        settings=settings,
        analyzer=RustCodeAnalyzer(cache=cache, logger=logger),
        diagnostics=diagnostics,
        logger=logger,
    )
