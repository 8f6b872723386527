"""Diagnostics and quick-fix providers used to validate extracted modules.

The orchestrator only depends on :class:`DiagnosticsProvider`. Any call may
find the provider absent or broken; implementations degrade to "no
diagnostics" instead of raising.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .models import (
    Diagnostic,
    DiagnosticSeverity,
    Position,
    QuickFix,
    TextEdit,
    TextRange,
)


class DiagnosticsProvider(ABC):
    """Source of diagnostics and quick fixes for a file."""

    @abstractmethod
    async def check(self, file_path: Path) -> List[Diagnostic]:
        """Diagnostics currently reported for *file_path*."""
        ...

    @abstractmethod
    async def quick_fixes(self, file_path: Path, text_range: TextRange) -> List[QuickFix]:
        """Candidate fixes for problems reported inside *text_range*."""
        ...


class NullDiagnosticsProvider(DiagnosticsProvider):
    """Provider for environments without a compiler: reports nothing."""

    async def check(self, file_path: Path) -> List[Diagnostic]:
        return []

    async def quick_fixes(self, file_path: Path, text_range: TextRange) -> List[QuickFix]:
        return []


class CargoDiagnosticsProvider(DiagnosticsProvider):
    """Runs ``cargo check --message-format=json`` and maps rustc output.

    Machine-applicable suggestions attached to a diagnostic (for example
    "consider importing this struct") become :class:`QuickFix` objects.
    Results of the last run are kept so :meth:`quick_fixes` does not
    re-run cargo.
    """

    def __init__(
        self,
        workspace_root: Path,
        cargo: str = "cargo",
        timeout: float = 120.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.workspace_root = Path(workspace_root).resolve()
        self.cargo = cargo
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self._last: Dict[Path, List[Tuple[Diagnostic, List[QuickFix]]]] = {}

    async def check(self, file_path: Path) -> List[Diagnostic]:
        target = Path(file_path).resolve()
        output = await self._run_cargo()
        if output is None:
            return []
        self._last = self.parse_messages(output)
        return [diag for diag, _ in self._last.get(target, [])]

    async def quick_fixes(self, file_path: Path, text_range: TextRange) -> List[QuickFix]:
        target = Path(file_path).resolve()
        fixes: List[QuickFix] = []
        for diag, diag_fixes in self._last.get(target, []):
            if diag.range is None or diag.range.intersects(text_range):
                fixes.extend(diag_fixes)
        return fixes

    async def _run_cargo(self) -> Optional[str]:
        cmd = [self.cargo, "check", "--message-format=json", "--quiet"]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.workspace_root),
            )
        except OSError as exc:
            self.logger.warning("cargo unavailable, skipping diagnostics: %s", exc)
            return None

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            self.logger.warning("cargo check timed out after %ss", self.timeout)
            return None
        # A failing build still exits non-zero with useful JSON on stdout.
        return stdout.decode("utf-8", errors="replace")

    def parse_messages(self, output: str) -> Dict[Path, List[Tuple[Diagnostic, List[QuickFix]]]]:
        """Group ``compiler-message`` records by the file of their primary span."""
        grouped: Dict[Path, List[Tuple[Diagnostic, List[QuickFix]]]] = {}
        for line in output.splitlines():
            line = line.strip()
            if not line.startswith("{"):
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            if record.get("reason") != "compiler-message":
                continue
            message = record.get("message") or {}
            primary = next((s for s in message.get("spans", []) if s.get("is_primary")), None)
            if primary is None:
                continue
            file_path = (self.workspace_root / primary["file_name"]).resolve()
            diag = Diagnostic(
                severity=DiagnosticSeverity.from_level(message.get("level", "")),
                message=message.get("message", ""),
                range=_span_range(primary),
                source="rustc",
            )
            grouped.setdefault(file_path, []).append((diag, self._fixes_for(message)))
        return grouped

    def _fixes_for(self, message: dict) -> List[QuickFix]:
        fixes = []
        for child in message.get("children", []):
            edits = [
                TextEdit(
                    file_path=str((self.workspace_root / span["file_name"]).resolve()),
                    range=_span_range(span),
                    new_text=span["suggested_replacement"],
                )
                for span in child.get("spans", [])
                if span.get("suggested_replacement") is not None
            ]
            if edits:
                fixes.append(QuickFix(description=child.get("message", ""), edits=edits))
        return fixes


def _span_range(span: dict) -> TextRange:
    return TextRange(
        Position(span["line_start"] - 1, span["column_start"] - 1),
        Position(span["line_end"] - 1, span["column_end"] - 1),
    )
