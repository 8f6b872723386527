"""Exception hierarchy for the extraction workflow.

Input and workspace problems are fatal and raised to the caller. Failures
of optional collaborators (language server, compiler bridge) are degraded
to warnings where they happen and never reach this module.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .models import Diagnostic, ExtractionReport


class RustSplitError(Exception):
    """Base class for all errors raised by rustsplit."""


class InputError(RustSplitError):
    """Bad request: empty selection, invalid module name, bad target path..."""


class WorkspaceError(RustSplitError):
    """The workspace cannot be read or written.

    Raised mid-extraction it carries the report, whose ``rolled_back``
    tells whether the files written so far were restored.
    """

    def __init__(self, message: str, report: Optional["ExtractionReport"] = None) -> None:
        super().__init__(message)
        self.report = report


class ExtractionCancelled(RustSplitError):
    """The caller cancelled the extraction before any file was touched."""


class ValidationFailed(RustSplitError):
    """The extracted module still has errors after the retry budget ran out."""

    def __init__(self, report: "ExtractionReport") -> None:
        self.report = report
        self.diagnostics: List["Diagnostic"] = list(report.diagnostics)
        self.attempts = report.attempts
        first = self.first_error
        if first is not None:
            detail = f"{first.message} (at {first.location()})"
        else:
            detail = "no diagnostics reported"
        super().__init__(
            f"Module '{report.module_name}' failed validation after "
            f"{self.attempts} attempt(s): {detail}"
        )

    @property
    def first_error(self) -> Optional["Diagnostic"]:
        for diag in self.diagnostics:
            if diag.is_error:
                return diag
        return self.diagnostics[0] if self.diagnostics else None
